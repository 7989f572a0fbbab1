# Copyright 2025 msq
"""灾种安全指引与单个避难所分析。

两者都调用大模型生成文本；模型不可用或返回空内容时回退到内置文案，不向上抛错。
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import structlog

from emergency_shelter.geo.geomath import Location, distance_km, ensure_valid
from emergency_shelter.llm.client import AsyncLLMClientProtocol
from emergency_shelter.llm.endpoint_manager import LLMEndpointError
from emergency_shelter.ranking.llm_ranker import _first_message_content
from emergency_shelter.shelters.models import DisasterType, RankingSource, Shelter

GUIDANCE_SYSTEM_PROMPT = "You are an emergency preparedness expert providing concise, actionable safety advice."
ANALYSIS_SYSTEM_PROMPT = "You are a disaster preparedness expert. Provide concise shelter analysis."

DEFAULT_GUIDANCE: Mapping[DisasterType, str] = {
    DisasterType.FLOOD: (
        "Move to higher ground immediately. Avoid walking or driving through flood water. "
        "Bring emergency supplies, important documents, and medications. "
        "Stay away from electrical equipment if you're wet."
    ),
    DisasterType.EARTHQUAKE: (
        "Drop, Cover, and Hold On during shaking. After shaking stops, evacuate if building is damaged. "
        "Watch for aftershocks. Bring emergency kit with water, food, flashlight, and first aid supplies."
    ),
    DisasterType.WILDFIRE: (
        "Evacuate immediately if ordered. Close all windows and doors. "
        "Bring identification, medications, and important documents. "
        "If trapped, stay low to avoid smoke inhalation."
    ),
    DisasterType.TORNADO: (
        "Seek shelter in interior room on lowest floor. Stay away from windows. "
        "Cover yourself with blankets or mattress. "
        "Mobile homes are not safe - find sturdy building or underground shelter."
    ),
    DisasterType.HURRICANE: (
        "Evacuate if in evacuation zone. If staying, go to interior room away from windows. "
        "Have emergency supplies for several days. Watch for storm surge and flooding."
    ),
    DisasterType.NONE: (
        "Stay informed about local hazards. Keep emergency kit ready with water, food, flashlight, radio, "
        "and first aid supplies. Know your evacuation routes."
    ),
}

# 基础分的距离折减上限（公里）
BASE_SCORE_DISTANCE_KM = 20.0


def default_guidance(disaster_type: DisasterType | str | None) -> str:
    return DEFAULT_GUIDANCE[DisasterType.parse(disaster_type)]


def base_score(shelter: Shelter, disaster_type: DisasterType | str | None, distance: float) -> float:
    """按距离、容量与灾种相关的建筑描述给出 [0, 1] 的启发式基础分。

    建筑描述取 type 文本与 structure_type 的组合，按关键字匹配加分。
    """

    disaster = DisasterType.parse(disaster_type)
    score = 0.5
    distance_factor = max(0.0, 1.0 - distance / BASE_SCORE_DISTANCE_KM)
    score += distance_factor * 0.3
    if shelter.capacity:
        score += min(1.0, shelter.capacity / 1000) * 0.1

    descriptor = " ".join(
        part for part in (shelter.type, shelter.structure_type.value if shelter.structure_type else "") if part
    ).lower()
    elevation = shelter.elevation or 0.0

    if disaster is DisasterType.FLOOD:
        if elevation > 10:
            score += 0.2
        if "multi" in descriptor:
            score += 0.1
    elif disaster is DisasterType.EARTHQUAKE:
        if "reinforced" in descriptor or "concrete" in descriptor:
            score += 0.2
    elif disaster is DisasterType.WILDFIRE:
        score += distance_factor * 0.2
        if "concrete" in descriptor or "brick" in descriptor:
            score += 0.1
    elif disaster is DisasterType.TORNADO:
        if "underground" in descriptor or "reinforced" in descriptor:
            score += 0.3
    elif disaster is DisasterType.HURRICANE:
        if elevation > 5:
            score += 0.1
        if "reinforced" in descriptor:
            score += 0.2
    return min(1.0, max(0.0, score))


@dataclass(frozen=True)
class GuidanceConfig:
    """指引与分析调用的模型参数。"""

    model: str
    temperature: float = 0.3
    guidance_max_tokens: int = 200
    analysis_max_tokens: int = 80


@dataclass(frozen=True)
class ShelterAnalysis:
    """单个避难所的分析结果；source 标明文本来自模型还是内置文案。"""

    shelter: Shelter
    distance_km: float
    score: float
    analysis: str
    source: RankingSource


class ShelterAdvisor:
    """灾种安全指引与单个避难所分析。未配置客户端时只使用内置文案。"""

    def __init__(
        self,
        *,
        config: Optional[GuidanceConfig] = None,
        client: Optional[AsyncLLMClientProtocol] = None,
    ) -> None:
        if client is not None and (config is None or not config.model):
            raise ValueError("指引 LLM 模型未配置")
        self._config = config
        self._client = client
        self._logger = structlog.get_logger(__name__).bind(model=config.model if config else None)

    async def disaster_guidance(self, disaster_type: DisasterType | str | None) -> str:
        disaster = DisasterType.parse(disaster_type)
        prompt = (
            f"Provide concise safety guidelines for a {disaster.value} emergency. Include:\n"
            "1. Immediate safety actions\n"
            "2. What to look for in a safe shelter\n"
            "3. Items to bring if evacuating\n"
            "Keep response under 150 words and practical."
        )
        content = await self._complete(
            "disaster_guidance",
            GUIDANCE_SYSTEM_PROMPT,
            prompt,
            max_tokens=self._config.guidance_max_tokens if self._config else 0,
            disaster_type=disaster.value,
        )
        return content or default_guidance(disaster)

    async def analyze_shelter(
        self,
        shelter: Shelter,
        disaster_type: DisasterType | str | None,
        user: Location,
    ) -> ShelterAnalysis:
        """基础分始终由启发式计算，模型只补充分析文本。"""

        ensure_valid(user)
        location = shelter.location
        if location is None:
            raise ValueError(f"避难所缺少坐标: {shelter.id}")
        disaster = DisasterType.parse(disaster_type)
        distance = distance_km(user, location)
        prompt = (
            f"Analyze this shelter for a {disaster.value} emergency:\n"
            f"- Name: {shelter.name}\n"
            f"- Type: {shelter.type or 'Emergency Shelter'}\n"
            f"- Distance: {distance:.1f}km\n"
            f"- Capacity: {shelter.capacity or 'Unknown'} people\n\n"
            f"Provide a brief analysis (50 words max) of why this shelter is suitable or not for {disaster.value}."
        )
        content = await self._complete(
            "shelter_analysis",
            ANALYSIS_SYSTEM_PROMPT,
            prompt,
            max_tokens=self._config.analysis_max_tokens if self._config else 0,
            disaster_type=disaster.value,
            shelter_id=shelter.id,
        )
        if content:
            analysis, source = content, RankingSource.AI
        else:
            analysis = f"This shelter is {distance:.1f}km away and suitable for {disaster.value} emergencies."
            source = RankingSource.FALLBACK
        return ShelterAnalysis(
            shelter=shelter,
            distance_km=distance,
            score=base_score(shelter, disaster, distance),
            analysis=analysis,
            source=source,
        )

    async def _complete(
        self,
        operation: str,
        system_prompt: str,
        prompt: str,
        *,
        max_tokens: int,
        **log_fields: Any,
    ) -> str:
        if self._client is None or self._config is None:
            return ""
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        start = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=max_tokens,
                messages=messages,
            )
        except LLMEndpointError as exc:
            self._logger.warning(
                f"{operation}_call_failed",
                endpoint=exc.endpoint,
                elapsed_ms=int((time.time() - start) * 1000),
                **log_fields,
            )
            return ""
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                f"{operation}_call_failed",
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=int((time.time() - start) * 1000),
                **log_fields,
            )
            return ""

        content = _first_message_content(response)
        if not content:
            self._logger.warning(f"{operation}_empty_response", **log_fields)
            return ""
        self._logger.info(
            f"{operation}_success",
            elapsed_ms=int((time.time() - start) * 1000),
            **log_fields,
        )
        return content
