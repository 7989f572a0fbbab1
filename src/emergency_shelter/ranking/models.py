# Copyright 2025 msq
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from emergency_shelter.geo.geomath import Location
from emergency_shelter.shelters.models import DisasterType, Shelter


class CandidateShelter(BaseModel):
    """提交给外部排序的候选避难所及其距离。"""

    model_config = ConfigDict(frozen=True)

    shelter: Shelter
    distance_km: float = Field(..., ge=0.0)

    def to_prompt_dict(self) -> Dict[str, Any]:
        shelter = self.shelter
        return {
            "id": shelter.id,
            "name": shelter.name,
            "type": shelter.type,
            "latitude": shelter.latitude,
            "longitude": shelter.longitude,
            "distance_km": round(self.distance_km, 3),
            "capacity": shelter.capacity,
            "elevation": shelter.elevation,
            "structure_type": shelter.structure_type.value if shelter.structure_type else None,
            "safety_rating": shelter.safety_rating,
            "accessibility_score": shelter.accessibility_score,
            "features": sorted(shelter.features),
        }


class RankingRequest(BaseModel):
    """外部排序请求。"""

    model_config = ConfigDict(frozen=True)

    disaster_type: DisasterType
    user_location: Location
    candidates: List[CandidateShelter]
    criteria_text: str

    @property
    def candidate_ids(self) -> List[str]:
        return [candidate.shelter.id for candidate in self.candidates]


class RankingEntry(BaseModel):
    """校验通过的单条排序结果。"""

    model_config = ConfigDict(frozen=True)

    id: str
    rank: int = Field(..., ge=1)
    score: Optional[float] = None
    reason: Optional[str] = None
