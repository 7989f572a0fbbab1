# Copyright 2025 msq
"""外部排序响应的防御式解析与逐条校验。"""

from __future__ import annotations

import json
import math
from typing import Any, Collection, List, Optional, Sequence, Set

import structlog

from emergency_shelter.errors import RankingUnavailable
from emergency_shelter.ranking.models import RankingEntry

logger = structlog.get_logger(__name__)

_DECODER = json.JSONDecoder()


def extract_json_array(text: str) -> Optional[List[Any]]:
    """返回文本中第一个完整合法的 JSON 数组；模型常在数组前后夹带说明文字或代码块标记。"""

    start = text.find("[")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)
    return None


def parse_ranking_payload(payload: Any) -> List[Any]:
    """将排序器返回值统一为非空列表，否则抛出 RankingUnavailable。"""

    if isinstance(payload, str):
        content = payload.strip()
        if not content:
            raise RankingUnavailable("empty_response")
        entries = extract_json_array(content)
        if entries is None:
            raise RankingUnavailable("unparseable_response", content[:200])
    elif isinstance(payload, Sequence) and not isinstance(payload, (bytes, bytearray)):
        entries = list(payload)
    else:
        raise RankingUnavailable("non_array_response", type(payload).__name__)

    if not entries:
        raise RankingUnavailable("empty_rankings")
    return entries


def _as_rank(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value != int(value) or value < 1:
        return None
    return int(value)


def _as_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    # 超出 [0, 1] 的分值（如百分制）视为缺失，由名次推导默认分
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        return None
    return float(value)


def validate_entries(raw_entries: Sequence[Any], known_ids: Collection[str]) -> List[RankingEntry]:
    """逐条校验：id 必须属于候选集，rank 必须为不小于 1 的整数值；不合格条目丢弃。

    同一 id 重复出现时只保留第一条。
    """

    valid: List[RankingEntry] = []
    seen: Set[str] = set()
    for raw in raw_entries:
        if not isinstance(raw, dict):
            logger.warning("ranking_entry_dropped", reason="not_an_object", entry=repr(raw)[:120])
            continue
        raw_id = raw.get("id")
        shelter_id = str(raw_id) if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) else ""
        if not shelter_id or shelter_id not in known_ids:
            logger.warning("ranking_entry_dropped", reason="unknown_id", shelter_id=raw_id)
            continue
        if shelter_id in seen:
            logger.warning("ranking_entry_dropped", reason="duplicate_id", shelter_id=shelter_id)
            continue
        rank = _as_rank(raw.get("rank"))
        if rank is None:
            logger.warning("ranking_entry_dropped", reason="invalid_rank", shelter_id=shelter_id, rank=raw.get("rank"))
            continue
        reason = raw.get("reason")
        valid.append(
            RankingEntry(
                id=shelter_id,
                rank=rank,
                score=_as_score(raw.get("score")),
                reason=reason.strip() if isinstance(reason, str) and reason.strip() else None,
            )
        )
        seen.add(shelter_id)
    return valid
