# Copyright 2025 msq
"""附近灾害匹配。

地震按用户距离半径筛选；气象预警按外包框包含用户位置筛选（忽略半径）。
结果顺序：地震按震级降序在前，面状预警按严重程度降序在后，两组直接拼接。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

import structlog

from emergency_shelter.errors import DegenerateGeometry, InvalidCoordinate, InvalidParameter
from emergency_shelter.geo.geomath import Location, bounding_box_contains, distance_km, ensure_valid
from emergency_shelter.hazards.models import AreaHazard, HazardCategory, NearbyHazard, PointHazard
from emergency_shelter.logging import hazard_match_metric
from emergency_shelter.shelters.models import DisasterType

logger = structlog.get_logger(__name__)

DEFAULT_RADIUS_KM = 50.0

# 关键字按优先级排列，先命中者生效
CATEGORY_KEYWORDS: Tuple[Tuple[HazardCategory, Tuple[str, ...]], ...] = (
    (
        HazardCategory.FLOOD,
        ("flood", "flash flood", "river flood", "coastal flood", "flooding"),
    ),
    (
        HazardCategory.WILDFIRE,
        ("fire", "red flag", "extreme fire", "wildfire", "brush fire"),
    ),
    (
        HazardCategory.TORNADO,
        ("tornado", "funnel cloud", "tornadic"),
    ),
    (
        HazardCategory.STORM,
        ("thunderstorm", "severe weather", "wind", "hail", "storm", "hurricane", "tropical storm"),
    ),
)

ALWAYS_CRITICAL: FrozenSet[HazardCategory] = frozenset(
    {HazardCategory.EARTHQUAKE, HazardCategory.WILDFIRE, HazardCategory.TORNADO}
)

CATEGORIES_BY_DISASTER: Mapping[DisasterType, FrozenSet[HazardCategory]] = {
    DisasterType.NONE: frozenset(),
    DisasterType.FLOOD: frozenset({HazardCategory.FLOOD}),
    DisasterType.EARTHQUAKE: frozenset({HazardCategory.EARTHQUAKE}),
    DisasterType.WILDFIRE: frozenset({HazardCategory.WILDFIRE}),
    DisasterType.TORNADO: frozenset({HazardCategory.TORNADO}),
    DisasterType.HURRICANE: frozenset({HazardCategory.STORM, HazardCategory.FLOOD}),
}


def categorize(event_text: Optional[str], source_type: Optional[str] = None) -> HazardCategory:
    """按来源类型与事件文本归类。"""

    if (source_type or "").strip().lower() == "earthquake":
        return HazardCategory.EARTHQUAKE
    event = (event_text or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in event for keyword in keywords):
            return category
    return HazardCategory.OTHER


def _check_radius(radius_km: object) -> None:
    if isinstance(radius_km, bool) or not isinstance(radius_km, (int, float)):
        raise InvalidParameter(f"radius_km must be a number, got {radius_km!r}")
    if not math.isfinite(radius_km) or radius_km <= 0:
        raise InvalidParameter(f"radius_km must be positive, got {radius_km!r}")


def _magnitude_key(hazard: NearbyHazard) -> float:
    # 震级缺失排在最后，USGS 的小震级可能为负值
    return hazard.magnitude if hazard.magnitude is not None else float("-inf")


@dataclass(frozen=True)
class HazardStatus:
    """首页状态摘要。"""

    level: Literal["active", "warning", "safe"]
    total: int
    critical: int


class HazardMatcher:
    """附近灾害匹配器，无状态，可并发复用。"""

    def __init__(self, *, default_radius_km: float = DEFAULT_RADIUS_KM) -> None:
        _check_radius(default_radius_km)
        self._default_radius_km = float(default_radius_km)

    def find_nearby(
        self,
        user: Optional[Location],
        earthquakes: Optional[Iterable[PointHazard]],
        area_hazards: Optional[Iterable[AreaHazard]],
        radius_km: Optional[float] = None,
    ) -> List[NearbyHazard]:
        radius = self._default_radius_km if radius_km is None else radius_km
        _check_radius(radius)
        if user is None:
            return []
        ensure_valid(user)

        quakes = self._match_earthquakes(user, tuple(earthquakes or ()), radius)
        areas = self._match_area_hazards(user, tuple(area_hazards or ()))

        quakes.sort(key=_magnitude_key, reverse=True)
        areas.sort(key=lambda hazard: hazard.severity.rank, reverse=True)
        nearby = quakes + areas

        for hazard in nearby:
            hazard_match_metric.labels(category=hazard.category.value).inc()
        logger.debug(
            "nearby_hazards_matched",
            earthquakes=len(quakes),
            area_hazards=len(areas),
            radius_km=radius,
        )
        return nearby

    def _match_earthquakes(
        self,
        user: Location,
        earthquakes: Sequence[PointHazard],
        radius_km: float,
    ) -> List[NearbyHazard]:
        matched: List[NearbyHazard] = []
        for quake in earthquakes:
            try:
                distance = distance_km(user, quake.location)
            except InvalidCoordinate as exc:
                logger.warning("hazard_skipped", hazard_id=quake.id, kind="earthquake", reason=str(exc))
                continue
            if distance > radius_km:
                continue
            matched.append(
                NearbyHazard(
                    id=quake.id,
                    category=HazardCategory.EARTHQUAKE,
                    title=quake.title,
                    magnitude=quake.magnitude,
                    place=quake.place,
                    timestamp=quake.timestamp,
                    location=quake.location,
                    distance_km=distance,
                )
            )
        return matched

    def _match_area_hazards(self, user: Location, area_hazards: Sequence[AreaHazard]) -> List[NearbyHazard]:
        matched: List[NearbyHazard] = []
        for alert in area_hazards:
            try:
                contained = bounding_box_contains(alert.polygon, user)
            except DegenerateGeometry as exc:
                logger.warning("hazard_skipped", hazard_id=alert.id, kind="area", reason=str(exc))
                continue
            if not contained:
                continue
            category = categorize(alert.event, alert.source_type) if alert.event else alert.kind
            matched.append(
                NearbyHazard(
                    id=alert.id,
                    category=category,
                    title=alert.event or alert.headline or "",
                    headline=alert.headline,
                    description=alert.description,
                    severity=alert.severity,
                    urgency=alert.urgency,
                    place=alert.areas,
                    sent=alert.sent,
                    expires=alert.expires,
                    contains_user=True,
                )
            )
        return matched


_DEFAULT_MATCHER = HazardMatcher()


def find_nearby(
    user: Optional[Location],
    earthquakes: Optional[Iterable[PointHazard]],
    area_hazards: Optional[Iterable[AreaHazard]],
    radius_km: float = DEFAULT_RADIUS_KM,
) -> List[NearbyHazard]:
    """使用默认匹配器查找附近灾害。"""
    return _DEFAULT_MATCHER.find_nearby(user, earthquakes, area_hazards, radius_km)


def critical_hazards(
    hazards: Iterable[NearbyHazard],
    disaster_type: DisasterType | str | None = None,
) -> List[NearbyHazard]:
    """地震、山火、龙卷风始终视为关键；声明灾种对应的类别同样视为关键。"""

    critical = ALWAYS_CRITICAL | CATEGORIES_BY_DISASTER.get(DisasterType.parse(disaster_type), frozenset())
    return [hazard for hazard in hazards if hazard.category in critical]


def assess_status(
    hazards: Sequence[NearbyHazard],
    disaster_type: DisasterType | str | None = None,
) -> HazardStatus:
    critical = critical_hazards(hazards, disaster_type)
    if critical:
        level = "active"
    elif hazards:
        level = "warning"
    else:
        level = "safe"
    return HazardStatus(level=level, total=len(hazards), critical=len(critical))
