# Copyright 2025 msq
from __future__ import annotations

from enum import Enum
from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from emergency_shelter.geo.geomath import Location, is_valid_location


class DisasterType(str, Enum):
    """用户声明的灾种，决定评分权重与关键灾害类别。"""

    NONE = "none"
    FLOOD = "flood"
    EARTHQUAKE = "earthquake"
    WILDFIRE = "wildfire"
    TORNADO = "tornado"
    HURRICANE = "hurricane"

    @classmethod
    def parse(cls, value: object) -> "DisasterType":
        """宽松解析，未知取值一律视为 none。"""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.NONE


class StructureType(str, Enum):
    """建筑结构类别。"""

    REINFORCED = "reinforced"
    CONCRETE = "concrete"
    LARGE_SPAN = "large_span"
    MULTI_STORY = "multi_story"
    TRADITIONAL = "traditional"
    SINGLE_STORY = "single_story"
    COMMERCIAL = "commercial"
    STANDARD = "standard"
    HIGH_RISE = "high_rise"
    UNDERGROUND = "underground"
    WOOD = "wood"


class RankingSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


class Shelter(BaseModel):
    """避难所参考数据（只读）。

    原始数据可能缺失坐标或名称，是否可用由 is_valid() 判定；
    structure_type / safety_rating / accessibility_score 由 enrichment 计算后挂在副本上。
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    type: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    elevation: Optional[float] = Field(default=None, description="海拔（米），未知为 None")
    features: FrozenSet[str] = Field(default_factory=frozenset)
    structure_type: Optional[StructureType] = None
    safety_rating: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    accessibility_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("features", mode="before")
    @classmethod
    def _normalize_features(cls, value: object) -> FrozenSet[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            return frozenset([value])
        return frozenset(str(item) for item in value)

    @property
    def location(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            return None
        return Location(latitude=self.latitude, longitude=self.longitude)

    def is_valid(self) -> bool:
        """基础校验：有 id、有名称、坐标为合法数值。"""
        if not self.id or not self.name.strip():
            return False
        location = self.location
        return location is not None and is_valid_location(location)


class ScoreBreakdown(BaseModel):
    """单项评分明细，均归一化到 [0, 1]。"""

    model_config = ConfigDict(frozen=True)

    distance_score: float
    elevation_score: float
    structure_score: float
    capacity_score: float


class RankedShelter(Shelter):
    """排序结果：避难所 + 距离、得分、名次、理由与来源。每次请求新建，不落库。"""

    distance_km: float = Field(..., ge=0.0)
    score: float
    rank: int = Field(..., ge=1)
    reason: str
    source: RankingSource
    breakdown: Optional[ScoreBreakdown] = None
    ai_analysis: Optional[str] = None

    @classmethod
    def from_shelter(cls, shelter: Shelter, **fields: Any) -> "RankedShelter":
        payload = {name: getattr(shelter, name) for name in Shelter.model_fields}
        payload.update(fields)
        return cls(**payload)

    @property
    def presentation_score(self) -> float:
        """展示用得分，裁剪到 [0, 1]；加权得分本身可能超过 1。"""
        return min(1.0, max(0.0, self.score))
