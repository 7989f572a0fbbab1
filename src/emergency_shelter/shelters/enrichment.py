# Copyright 2025 msq
"""避难所派生属性计算：结构类别、安全评级、无障碍评分。

所有派生值只依赖原始字段（type / capacity / elevation / features），
因此对同一避难所重复执行结果不变。
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Tuple

from emergency_shelter.shelters.models import Shelter, StructureType

STRUCTURE_TYPE_BY_SHELTER_TYPE: Mapping[str, StructureType] = {
    "Fire Station": StructureType.REINFORCED,
    "Medical Facility": StructureType.REINFORCED,
    "Government Building": StructureType.REINFORCED,
    "School Gymnasium": StructureType.CONCRETE,
    "High School": StructureType.CONCRETE,
    "College Facility": StructureType.CONCRETE,
    "Convention Center": StructureType.LARGE_SPAN,
    "Community Center": StructureType.MULTI_STORY,
    "Public Library": StructureType.MULTI_STORY,
    "Recreation Center": StructureType.MULTI_STORY,
    "Religious Facility": StructureType.TRADITIONAL,
    "Senior Center": StructureType.SINGLE_STORY,
    "Park Facility": StructureType.SINGLE_STORY,
    "Commercial Center": StructureType.COMMERCIAL,
}

_STRUCTURE_SAFETY_BONUS: Dict[StructureType, float] = {
    StructureType.REINFORCED: 0.3,
    StructureType.CONCRETE: 0.2,
    StructureType.MULTI_STORY: 0.1,
    StructureType.LARGE_SPAN: 0.1,
    StructureType.TRADITIONAL: 0.05,
    StructureType.SINGLE_STORY: 0.0,
    StructureType.COMMERCIAL: 0.05,
    StructureType.STANDARD: 0.0,
}

_TYPE_ACCESSIBILITY_BONUS: Dict[str, float] = {
    "Senior Center": 0.3,
    "Medical Facility": 0.2,
    "Public Library": 0.2,
    "Government Building": 0.2,
    "Community Center": 0.15,
    "School Gymnasium": 0.1,
    "Recreation Center": 0.1,
}

BASE_SAFETY_RATING = 0.5
BASE_ACCESSIBILITY_SCORE = 0.5


def structure_type_for(shelter_type: str | None) -> StructureType:
    """按避难所类型查表得到结构类别，未登记的类型为 standard。"""
    return STRUCTURE_TYPE_BY_SHELTER_TYPE.get(shelter_type or "", StructureType.STANDARD)


def safety_rating(shelter: Shelter) -> float:
    rating = BASE_SAFETY_RATING
    rating += _STRUCTURE_SAFETY_BONUS.get(structure_type_for(shelter.type), 0.0)

    capacity = shelter.capacity or 0
    if capacity > 500:
        rating += 0.1
    elif capacity > 200:
        rating += 0.05

    elevation = shelter.elevation or 0.0
    if elevation > 20:
        rating += 0.1
    elif elevation > 10:
        rating += 0.05

    features = shelter.features
    if "Emergency Power" in features:
        rating += 0.05
    if "Medical Equipment" in features or "Medical Care" in features:
        rating += 0.05
    if "Reinforced Structure" in features:
        rating += 0.1

    return min(1.0, rating)


def accessibility_score(shelter: Shelter) -> float:
    score = BASE_ACCESSIBILITY_SCORE
    score += _TYPE_ACCESSIBILITY_BONUS.get(shelter.type, 0.0)

    features = shelter.features
    if "Accessible Design" in features:
        score += 0.2
    if "Parking" in features:
        score += 0.1
    if "Medical Station" in features or "Medical Care" in features:
        score += 0.1

    return min(1.0, score)


def enrich(shelter: Shelter) -> Shelter:
    """返回附带派生属性的副本，原对象不变。"""
    return shelter.model_copy(
        update={
            "structure_type": structure_type_for(shelter.type),
            "safety_rating": safety_rating(shelter),
            "accessibility_score": accessibility_score(shelter),
        }
    )


def enrich_all(shelters: Iterable[Shelter]) -> Tuple[Shelter, ...]:
    return tuple(enrich(shelter) for shelter in shelters)
