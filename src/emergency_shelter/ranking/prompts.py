# Copyright 2025 msq
from __future__ import annotations

import json
from typing import Dict, List, Mapping

from emergency_shelter.ranking.models import RankingRequest
from emergency_shelter.shelters.models import DisasterType

SYSTEM_PROMPT = "You are a disaster preparedness expert. Always respond with valid JSON only."

# 各灾种的排序准则说明，随请求发送给模型
DISASTER_CRITERIA: Mapping[DisasterType, str] = {
    DisasterType.FLOOD: (
        "- Elevation and height above flood level (MOST IMPORTANT)\n"
        "- Distance from flood-prone areas\n"
        "- Multi-story buildings preferred\n"
        "- Avoid basements or ground floors"
    ),
    DisasterType.EARTHQUAKE: (
        "- Structural integrity and building codes compliance\n"
        "- Distance from fault lines\n"
        "- Newer construction preferred\n"
        "- Open areas around building for safety"
    ),
    DisasterType.WILDFIRE: (
        "- Distance from fire-prone vegetation areas (MOST IMPORTANT)\n"
        "- Concrete/brick construction preferred\n"
        "- Access to water supply\n"
        "- Clear evacuation routes"
    ),
    DisasterType.TORNADO: (
        "- Underground or reinforced concrete structures (MOST IMPORTANT)\n"
        "- Interior rooms without windows\n"
        "- Lower floors preferred\n"
        "- Avoid mobile structures"
    ),
    DisasterType.HURRICANE: (
        "- Reinforced construction\n"
        "- Elevated structures (above storm surge)\n"
        "- Distance from coast\n"
        "- Structural wind resistance"
    ),
    DisasterType.NONE: (
        "- General structural integrity\n"
        "- Accessibility\n"
        "- Capacity for occupants\n"
        "- Distance from user location"
    ),
}


def criteria_text(disaster_type: DisasterType | str | None) -> str:
    return DISASTER_CRITERIA.get(DisasterType.parse(disaster_type), DISASTER_CRITERIA[DisasterType.NONE])


def build_messages(request: RankingRequest) -> List[Dict[str, str]]:
    """构造排序提示：候选集、灾种准则与严格的 JSON 数组输出格式。"""

    disaster = request.disaster_type.value
    total = len(request.candidates)
    shelters_json = json.dumps(
        [candidate.to_prompt_dict() for candidate in request.candidates],
        ensure_ascii=False,
        indent=2,
    )
    user = request.user_location
    prompt = (
        "You are an expert in disaster safety and emergency management.\n\n"
        f"DISASTER: {disaster}\n"
        f"USER LOCATION: ({user.latitude}, {user.longitude})\n\n"
        f"SHELTERS TO EVALUATE:\n{shelters_json}\n\n"
        f"TASK: Rank these shelters from 1 (best) to {total} (worst) for this specific disaster type.\n\n"
        f"RANKING CRITERIA for {disaster}:\n{request.criteria_text}\n\n"
        "REQUIRED OUTPUT FORMAT (return ONLY valid JSON):\n"
        "[\n"
        "  {\n"
        '    "id": "shelter_id",\n'
        '    "rank": 1,\n'
        '    "score": 0.95,\n'
        '    "reason": "Brief explanation why this shelter is ranked here"\n'
        "  }\n"
        "]\n\n"
        f"Return EXACTLY a JSON array with all {total} shelters ranked."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
