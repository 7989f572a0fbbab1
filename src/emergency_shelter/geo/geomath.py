# Copyright 2025 msq
"""地理计算基础函数：球面距离、多边形质心与外包框判定。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from emergency_shelter.errors import DegenerateGeometry, InvalidCoordinate, InvalidParameter

EARTH_RADIUS_KM = 6371.0
MIN_POLYGON_POINTS = 3


class Location(BaseModel):
    """经纬度点位（WGS84，度）。

    构造时不做范围校验；越界坐标在距离等计算时抛出 InvalidCoordinate。
    """

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


@dataclass(frozen=True)
class BoundingBox:
    """轴对齐外包框。"""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, point: Location) -> bool:
        return (
            self.min_lat <= point.latitude <= self.max_lat
            and self.min_lon <= point.longitude <= self.max_lon
        )


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def ensure_valid(location: Any) -> Location:
    """校验点位坐标，返回原对象；非法时抛出 InvalidCoordinate。"""

    latitude = getattr(location, "latitude", None)
    longitude = getattr(location, "longitude", None)
    if not _is_number(latitude) or not _is_number(longitude):
        raise InvalidCoordinate(
            f"non-numeric coordinate: ({latitude!r}, {longitude!r})",
            latitude=latitude,
            longitude=longitude,
        )
    if not -90.0 <= latitude <= 90.0:
        raise InvalidCoordinate(
            f"latitude out of range (-90 to 90): {latitude}",
            latitude=latitude,
            longitude=longitude,
        )
    if not -180.0 <= longitude <= 180.0:
        raise InvalidCoordinate(
            f"longitude out of range (-180 to 180): {longitude}",
            latitude=latitude,
            longitude=longitude,
        )
    return location


def is_valid_location(location: Any) -> bool:
    try:
        ensure_valid(location)
    except InvalidCoordinate:
        return False
    return True


def distance_km(a: Location, b: Location) -> float:
    """Haversine 大圆距离（公里）。

    任一点位非法时抛出 InvalidCoordinate；调用方应视为"距离未知"而非 0。
    """

    ensure_valid(a)
    ensure_valid(b)
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * (math.sin(d_lon / 2) ** 2)
    # 浮点误差可能让 h 略微越过 [0, 1]
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_nearby(a: Location, b: Location, max_distance_km: float) -> bool:
    """判断两点距离是否不超过 max_distance_km。"""

    if not _is_number(max_distance_km) or max_distance_km <= 0:
        raise InvalidParameter(f"max_distance_km must be positive, got {max_distance_km!r}")
    return distance_km(a, b) <= max_distance_km


def numeric_points(ring: Iterable[Any]) -> List[Tuple[float, float]]:
    """提取环中的数值点 (lon, lat)，忽略格式不合法的条目。"""

    points: List[Tuple[float, float]] = []
    for entry in ring or ():
        if not isinstance(entry, Sequence) or isinstance(entry, (str, bytes)) or len(entry) < 2:
            continue
        lon, lat = entry[0], entry[1]
        if _is_number(lon) and _is_number(lat):
            points.append((float(lon), float(lat)))
    return points


def polygon_centroid(ring: Iterable[Any], min_points: int = MIN_POLYGON_POINTS) -> Location:
    """多边形顶点的算术平均点。"""

    points = numeric_points(ring)
    if len(points) < min_points:
        raise DegenerateGeometry(
            f"polygon needs at least {min_points} numeric points, got {len(points)}",
            valid_points=len(points),
        )
    lon_sum = sum(lon for lon, _ in points)
    lat_sum = sum(lat for _, lat in points)
    return Location(latitude=lat_sum / len(points), longitude=lon_sum / len(points))


def bounding_box(ring: Iterable[Any], min_points: int = MIN_POLYGON_POINTS) -> BoundingBox:
    points = numeric_points(ring)
    if len(points) < min_points:
        raise DegenerateGeometry(
            f"polygon needs at least {min_points} numeric points, got {len(points)}",
            valid_points=len(points),
        )
    lons = [lon for lon, _ in points]
    lats = [lat for _, lat in points]
    return BoundingBox(min_lat=min(lats), max_lat=max(lats), min_lon=min(lons), max_lon=max(lons))


def bounding_box_contains(ring: Iterable[Any], point: Location) -> bool:
    """外包框包含判定（近似，非严格点在多边形内）。

    外包框内、多边形外的点同样判为包含；凹多边形的误报范围更大。
    边界为闭区间。
    """

    ensure_valid(point)
    return bounding_box(ring).contains(point)


def outer_ring(geometry: Mapping[str, Any] | None) -> List[Any]:
    """取 GeoJSON 面要素的外环：Polygon 取第一个环，MultiPolygon 取第一个多边形的外环。"""

    if not isinstance(geometry, Mapping):
        raise DegenerateGeometry("geometry missing")
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, list) or not coordinates:
        raise DegenerateGeometry("geometry missing coordinates array")
    geometry_type = geometry.get("type")
    if geometry_type == "Polygon":
        ring = coordinates[0]
    elif geometry_type == "MultiPolygon":
        first = coordinates[0]
        ring = first[0] if isinstance(first, list) and first else None
    else:
        raise DegenerateGeometry(f"unsupported geometry type: {geometry_type}")
    if not isinstance(ring, list):
        raise DegenerateGeometry(f"invalid {geometry_type} coordinates")
    return ring


def geometry_centroid(geometry: Mapping[str, Any] | None) -> Location:
    """GeoJSON 几何的代表点：Point 直接取坐标，面要素取外环质心。"""

    if isinstance(geometry, Mapping) and geometry.get("type") == "Point":
        coordinates = geometry.get("coordinates")
        points = numeric_points([coordinates])
        if not points:
            raise DegenerateGeometry(f"invalid Point coordinates: {coordinates!r}")
        lon, lat = points[0]
        return Location(latitude=lat, longitude=lon)
    return polygon_centroid(outer_ring(geometry))
