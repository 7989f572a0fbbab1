# Copyright 2025 msq
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from emergency_shelter.errors import DegenerateGeometry
from emergency_shelter.geo.geomath import Location, numeric_points, outer_ring


class HazardCategory(str, Enum):
    """统一后的灾害类别。"""

    EARTHQUAKE = "earthquake"
    FLOOD = "flood"
    WILDFIRE = "wildfire"
    TORNADO = "tornado"
    STORM = "storm"
    OTHER = "other"


class Severity(str, Enum):
    """预警严重程度（沿用 CAP 取值）。"""

    EXTREME = "Extreme"
    SEVERE = "Severe"
    MODERATE = "Moderate"
    MINOR = "Minor"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: object) -> "Severity":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.UNKNOWN


SEVERITY_RANK = {
    Severity.EXTREME: 4,
    Severity.SEVERE: 3,
    Severity.MODERATE: 2,
    Severity.MINOR: 1,
    Severity.UNKNOWN: 0,
}


def _epoch_ms_to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def _properties_of(feature: Mapping[str, Any]) -> Mapping[str, Any]:
    # 属性缺失或不是对象时按空属性处理
    properties = feature.get("properties")
    return properties if isinstance(properties, Mapping) else {}


class PointHazard(BaseModel):
    """点状灾害（地震）。"""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: Literal["earthquake"] = "earthquake"
    location: Location
    magnitude: Optional[float] = None
    timestamp: Optional[datetime] = None
    title: str = ""
    place: Optional[str] = None

    @classmethod
    def from_geojson(cls, feature: Mapping[str, Any]) -> "PointHazard":
        """从 USGS GeoJSON Feature 提取最小字段集。"""

        geometry = feature.get("geometry") or {}
        if not isinstance(geometry, Mapping):
            raise DegenerateGeometry(f"earthquake geometry must be an object, got {type(geometry).__name__}")
        if geometry.get("type") != "Point":
            raise DegenerateGeometry(f"earthquake geometry must be Point, got {geometry.get('type')!r}")
        points = numeric_points([geometry.get("coordinates")])
        if not points:
            raise DegenerateGeometry(f"invalid Point coordinates: {geometry.get('coordinates')!r}")
        lon, lat = points[0]
        properties = _properties_of(feature)
        return cls(
            id=str(feature.get("id") or ""),
            location=Location(latitude=lat, longitude=lon),
            magnitude=properties.get("mag"),
            timestamp=_epoch_ms_to_datetime(properties.get("time")),
            title=properties.get("title") or "",
            place=properties.get("place"),
        )


class AreaHazard(BaseModel):
    """面状灾害（气象预警），polygon 为外环 (lon, lat) 序列。"""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: HazardCategory = HazardCategory.OTHER
    event: str = ""
    source_type: Optional[str] = None
    polygon: Tuple[Any, ...] = Field(default_factory=tuple)
    severity: Severity = Severity.UNKNOWN
    urgency: Optional[str] = None
    certainty: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    areas: Optional[str] = None
    sent: Optional[datetime] = None
    expires: Optional[datetime] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: object) -> Severity:
        return Severity.parse(value)

    @classmethod
    def from_geojson(cls, feature: Mapping[str, Any]) -> "AreaHazard":
        """从 NWS GeoJSON Feature 提取外环与预警属性。"""

        # 延迟导入，避免与 matcher 循环依赖
        from emergency_shelter.hazards.matcher import categorize

        ring = outer_ring(feature.get("geometry"))
        properties = _properties_of(feature)
        event = properties.get("event") or ""
        source_type = properties.get("type")
        return cls(
            id=str(feature.get("id") or ""),
            kind=categorize(event, source_type),
            event=event,
            source_type=source_type,
            polygon=tuple(ring),
            severity=properties.get("severity"),
            urgency=properties.get("urgency"),
            certainty=properties.get("certainty"),
            headline=properties.get("headline"),
            description=properties.get("description"),
            areas=properties.get("areaDesc") or properties.get("areas"),
            sent=properties.get("sent"),
            expires=properties.get("expires"),
        )


class NearbyHazard(BaseModel):
    """附近灾害的统一展示投影。"""

    model_config = ConfigDict(frozen=True)

    id: str
    category: HazardCategory
    title: str = ""
    headline: Optional[str] = None
    description: Optional[str] = None
    magnitude: Optional[float] = None
    severity: Severity = Severity.UNKNOWN
    urgency: Optional[str] = None
    place: Optional[str] = None
    timestamp: Optional[datetime] = None
    sent: Optional[datetime] = None
    expires: Optional[datetime] = None
    location: Optional[Location] = None
    distance_km: Optional[float] = None
    contains_user: bool = False

    @property
    def is_earthquake(self) -> bool:
        return self.category is HazardCategory.EARTHQUAKE
