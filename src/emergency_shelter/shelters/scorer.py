# Copyright 2025 msq
"""确定性多准则避难所评分。

评分规则以数据表形式按灾种索引（CRITERIA_PROFILES / STRUCTURE_SCORE_TABLES），
新增灾种只需补表，不改评分流程。最终得分为加权和，不归一化、不裁剪，
不同灾种的得分量级因此不可直接比较；展示层如需 [0, 1] 请使用
RankedShelter.presentation_score。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple

import structlog

from emergency_shelter.errors import InvalidCoordinate
from emergency_shelter.geo.geomath import Location, distance_km, ensure_valid
from emergency_shelter.shelters.models import (
    DisasterType,
    RankedShelter,
    RankingSource,
    ScoreBreakdown,
    Shelter,
    StructureType,
)

logger = structlog.get_logger(__name__)

# 通用排序使用的宽口径距离上限
WIDE_DISTANCE_CAP_KM = 20.0
# 加权准则排序使用的窄口径距离上限
NARROW_DISTANCE_CAP_KM = 10.0
ELEVATION_CAP_M = 100.0
CAPACITY_CAP = 1000
DEFAULT_CRITERION_SCORE = 0.5


@dataclass(frozen=True)
class CriteriaProfile:
    """单个灾种的准则权重（不要求和为 1）。"""

    distance: float
    elevation: float
    structure: float
    capacity: float

    def weighted(self, breakdown: ScoreBreakdown) -> float:
        return (
            breakdown.distance_score * self.distance
            + breakdown.elevation_score * self.elevation
            + breakdown.structure_score * self.structure
            + breakdown.capacity_score * self.capacity
        )


@dataclass(frozen=True)
class StructureScoreTable:
    """结构类别得分表，未登记类别取 default。"""

    scores: Mapping[StructureType, float] = field(default_factory=dict)
    default: float = DEFAULT_CRITERION_SCORE

    def lookup(self, structure_type: Optional[StructureType]) -> float:
        if structure_type is None:
            return DEFAULT_CRITERION_SCORE
        return self.scores.get(structure_type, self.default)


CRITERIA_PROFILES: Mapping[DisasterType, CriteriaProfile] = {
    DisasterType.FLOOD: CriteriaProfile(distance=0.8, elevation=1.0, structure=0.6, capacity=0.4),
    DisasterType.EARTHQUAKE: CriteriaProfile(distance=0.8, elevation=0.4, structure=1.0, capacity=0.6),
    DisasterType.WILDFIRE: CriteriaProfile(distance=1.0, elevation=0.6, structure=0.8, capacity=0.4),
    DisasterType.TORNADO: CriteriaProfile(distance=0.8, elevation=0.2, structure=1.0, capacity=0.6),
    DisasterType.HURRICANE: CriteriaProfile(distance=0.6, elevation=0.8, structure=1.0, capacity=0.4),
}
DEFAULT_PROFILE = CRITERIA_PROFILES[DisasterType.EARTHQUAKE]

STRUCTURE_SCORE_TABLES: Mapping[DisasterType, StructureScoreTable] = {
    DisasterType.EARTHQUAKE: StructureScoreTable(
        scores={
            StructureType.REINFORCED: 1.0,
            StructureType.CONCRETE: 0.8,
            StructureType.WOOD: 0.4,
        },
        default=0.5,
    ),
    DisasterType.TORNADO: StructureScoreTable(
        scores={
            StructureType.UNDERGROUND: 1.0,
            StructureType.REINFORCED: 0.8,
            StructureType.CONCRETE: 0.6,
        },
        default=0.4,
    ),
    DisasterType.FLOOD: StructureScoreTable(
        scores={
            StructureType.HIGH_RISE: 1.0,
            StructureType.MULTI_STORY: 0.8,
            StructureType.SINGLE_STORY: 0.4,
        },
        default=0.5,
    ),
}
DEFAULT_STRUCTURE_TABLE = STRUCTURE_SCORE_TABLES[DisasterType.EARTHQUAKE]


def profile_for(disaster_type: DisasterType | str | None) -> CriteriaProfile:
    return CRITERIA_PROFILES.get(DisasterType.parse(disaster_type), DEFAULT_PROFILE)


def structure_table_for(disaster_type: DisasterType | str | None) -> StructureScoreTable:
    return STRUCTURE_SCORE_TABLES.get(DisasterType.parse(disaster_type), DEFAULT_STRUCTURE_TABLE)


def _elevation_score(elevation: Optional[float]) -> float:
    if elevation is None:
        return DEFAULT_CRITERION_SCORE
    return min(1.0, max(0.0, elevation / ELEVATION_CAP_M))


def _capacity_score(capacity: Optional[int]) -> float:
    if capacity is None:
        return DEFAULT_CRITERION_SCORE
    return min(1.0, capacity / CAPACITY_CAP)


class ShelterScorer:
    """按灾种权重对避难所集合做确定性评分，无外部调用。"""

    def __init__(self, *, distance_cap_km: float = WIDE_DISTANCE_CAP_KM) -> None:
        if distance_cap_km <= 0:
            raise ValueError("distance_cap_km 必须大于 0")
        self._distance_cap_km = float(distance_cap_km)

    @property
    def distance_cap_km(self) -> float:
        return self._distance_cap_km

    def breakdown(self, shelter: Shelter, disaster_type: DisasterType, distance: float) -> ScoreBreakdown:
        """计算单个避难所的各项得分。"""
        return ScoreBreakdown(
            distance_score=max(0.0, 1.0 - distance / self._distance_cap_km),
            elevation_score=_elevation_score(shelter.elevation),
            structure_score=structure_table_for(disaster_type).lookup(shelter.structure_type),
            capacity_score=_capacity_score(shelter.capacity),
        )

    def score(
        self,
        shelters: Iterable[Shelter],
        disaster_type: DisasterType | str,
        user: Location,
    ) -> List[RankedShelter]:
        """返回按得分降序的排序结果；同分保持输入顺序。

        坐标非法的避难所逐条跳过；用户坐标非法时抛出 InvalidCoordinate。
        """

        ensure_valid(user)
        disaster = DisasterType.parse(disaster_type)
        profile = profile_for(disaster)

        scored: List[Tuple[float, float, ScoreBreakdown, Shelter]] = []
        for shelter in tuple(shelters):
            location = shelter.location
            if location is None:
                logger.warning("shelter_score_skipped", shelter_id=shelter.id, reason="missing_coordinates")
                continue
            try:
                distance = distance_km(user, location)
            except InvalidCoordinate as exc:
                logger.warning("shelter_score_skipped", shelter_id=shelter.id, reason=str(exc))
                continue
            breakdown = self.breakdown(shelter, disaster, distance)
            scored.append((profile.weighted(breakdown), distance, breakdown, shelter))

        # sorted 为稳定排序，同分保持输入顺序
        ordered = sorted(scored, key=lambda item: item[0], reverse=True)
        return [
            RankedShelter.from_shelter(
                shelter,
                distance_km=distance,
                score=final_score,
                rank=index,
                reason=_explain(disaster, distance, breakdown),
                source=RankingSource.FALLBACK,
                breakdown=breakdown,
            )
            for index, (final_score, distance, breakdown, shelter) in enumerate(ordered, start=1)
        ]


def _explain(disaster: DisasterType, distance: float, breakdown: ScoreBreakdown) -> str:
    label = disaster.value if disaster is not DisasterType.NONE else "general"
    return (
        f"Scored for {label}: {distance:.1f}km away "
        f"(distance {breakdown.distance_score:.2f}, elevation {breakdown.elevation_score:.2f}, "
        f"structure {breakdown.structure_score:.2f}, capacity {breakdown.capacity_score:.2f})"
    )
