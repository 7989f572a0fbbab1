# Copyright 2025 msq
from __future__ import annotations

from typing import Any, Protocol, Sequence, Union, runtime_checkable

from emergency_shelter.ranking.models import RankingRequest

# 排序器可返回模型原文（由编排器解析）或已解码的条目列表
RankingPayload = Union[str, Sequence[Any]]


@runtime_checkable
class Ranker(Protocol):
    """外部排序能力接口，编排器的兜底逻辑与具体后端解耦。

    失败时抛出任意异常即可（推荐 RankingUnavailable），编排器统一转入确定性评分。
    """

    async def rank(self, request: RankingRequest) -> RankingPayload:
        ...
