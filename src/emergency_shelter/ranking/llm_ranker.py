# Copyright 2025 msq
"""基于 OpenAI 兼容接口的避难所排序实现。"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import structlog

from emergency_shelter.errors import RankingUnavailable
from emergency_shelter.llm.client import AsyncLLMClientProtocol
from emergency_shelter.llm.endpoint_manager import LLMEndpointError
from emergency_shelter.ranking.models import RankingRequest
from emergency_shelter.ranking.prompts import build_messages
from emergency_shelter.ranking.ranker import Ranker


@dataclass(frozen=True)
class LLMRankerConfig:
    """排序 LLM 配置。"""

    model: str
    temperature: float = 0.2
    max_tokens: int = 1000


class LLMShelterRanker(Ranker):
    """调用大模型对候选避难所排序，返回模型原文由编排器解析。"""

    def __init__(self, *, config: LLMRankerConfig, client: AsyncLLMClientProtocol) -> None:
        if not config.model:
            raise ValueError("排序 LLM 模型未配置")
        self._config = config
        self._client = client
        self._logger = structlog.get_logger(__name__).bind(model=config.model)

    async def rank(self, request: RankingRequest) -> str:
        start = time.time()
        messages = build_messages(request)
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                messages=messages,
            )
        except LLMEndpointError as exc:
            self._logger.warning(
                "shelter_ranker_call_failed",
                endpoint=exc.endpoint,
                disaster_type=request.disaster_type.value,
                elapsed_ms=int((time.time() - start) * 1000),
            )
            raise RankingUnavailable("llm_call_failed", str(exc.__cause__ or exc)) from exc

        content = _first_message_content(response)
        if not content:
            self._logger.warning("shelter_ranker_empty_response", disaster_type=request.disaster_type.value)
            raise RankingUnavailable("empty_response")
        self._logger.info(
            "shelter_ranker_success",
            disaster_type=request.disaster_type.value,
            candidate_count=len(request.candidates),
            elapsed_ms=int((time.time() - start) * 1000),
        )
        return content


def _first_message_content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content.strip() if isinstance(content, str) else ""
