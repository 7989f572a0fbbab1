# Copyright 2025 msq
"""避难所推荐编排：外部排序优先，任何失败都回退到确定性评分。"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from emergency_shelter.errors import NoValidShelters, RankingUnavailable
from emergency_shelter.geo.geomath import Location, distance_km, ensure_valid
from emergency_shelter.logging import ranking_latency_metric, recommendation_source_metric
from emergency_shelter.ranking.models import CandidateShelter, RankingEntry, RankingRequest
from emergency_shelter.ranking.parser import parse_ranking_payload, validate_entries
from emergency_shelter.ranking.prompts import criteria_text
from emergency_shelter.ranking.ranker import Ranker
from emergency_shelter.shelters.models import DisasterType, RankedShelter, RankingSource, Shelter
from emergency_shelter.shelters.scorer import ShelterScorer

logger = structlog.get_logger(__name__)

DEFAULT_CANDIDATE_LIMIT = 10
DEFAULT_RANKING_TIMEOUT_SECONDS = 12.0


@dataclass(frozen=True)
class _Prepared:
    """单次请求的不可变输入快照。"""

    disaster_type: DisasterType
    user: Location
    valid: Tuple[Shelter, ...]
    distances: Dict[str, float]
    candidates: Tuple[CandidateShelter, ...]


class RecommendationOrchestrator:
    """避难所推荐编排器。

    每次调用独立无共享可变状态；外部排序只尝试一次，并受 timeout_seconds 约束，
    超时即取消并回退。只要存在至少一个坐标合法的避难所，recommend 就不会失败。
    """

    def __init__(
        self,
        ranker: Optional[Ranker] = None,
        scorer: Optional[ShelterScorer] = None,
        *,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        timeout_seconds: float = DEFAULT_RANKING_TIMEOUT_SECONDS,
    ) -> None:
        if ranker is not None and not isinstance(ranker, Ranker):
            raise TypeError("ranker 必须实现 Ranker 协议")
        if candidate_limit < 1:
            raise ValueError("candidate_limit 必须大于 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds 必须大于 0")
        self._ranker = ranker
        self._scorer = scorer or ShelterScorer()
        self._candidate_limit = candidate_limit
        self._timeout_seconds = float(timeout_seconds)

    @property
    def ranker(self) -> Optional[Ranker]:
        return self._ranker

    async def recommend(
        self,
        disaster_type: DisasterType | str,
        user: Location,
        shelters: Iterable[Shelter],
    ) -> List[RankedShelter]:
        start = time.time()
        prepared = self._prepare(disaster_type, user, shelters)

        fallback_reason: Optional[str] = None
        results: List[RankedShelter] = []
        if self._ranker is None:
            fallback_reason = "ranker_not_configured"
        else:
            try:
                results = await self._rank_with_ai(prepared)
            except RankingUnavailable as exc:
                fallback_reason = exc.reason
                logger.warning(
                    "shelter_ranking_unavailable",
                    reason=exc.reason,
                    detail=exc.detail,
                    disaster_type=prepared.disaster_type.value,
                )

        source = RankingSource.AI
        if fallback_reason is not None:
            source = RankingSource.FALLBACK
            results = self._fallback(prepared)

        recommendation_source_metric.labels(
            source=source.value,
            disaster_type=prepared.disaster_type.value,
        ).inc()
        logger.info(
            "shelter_recommendation_completed",
            source=source.value,
            fallback_reason=fallback_reason,
            disaster_type=prepared.disaster_type.value,
            valid_shelters=len(prepared.valid),
            candidates=len(prepared.candidates),
            results=len(results),
            elapsed_ms=int((time.time() - start) * 1000),
        )
        return results

    def _prepare(
        self,
        disaster_type: DisasterType | str,
        user: Location,
        shelters: Iterable[Shelter],
    ) -> _Prepared:
        ensure_valid(user)
        snapshot = tuple(shelters or ())
        valid = tuple(shelter for shelter in snapshot if shelter.is_valid())
        if not valid:
            logger.error("shelter_recommendation_no_valid_shelters", total=len(snapshot))
            raise NoValidShelters(len(snapshot))

        # 同一 id 重复时以第一条为准
        distances: Dict[str, float] = {}
        unique: List[Shelter] = []
        for shelter in valid:
            if shelter.id in distances:
                continue
            distances[shelter.id] = distance_km(user, shelter.location)
            unique.append(shelter)

        nearest = sorted(unique, key=lambda shelter: distances[shelter.id])[: self._candidate_limit]
        candidates = tuple(
            CandidateShelter(shelter=shelter, distance_km=distances[shelter.id]) for shelter in nearest
        )
        return _Prepared(
            disaster_type=DisasterType.parse(disaster_type),
            user=user,
            valid=tuple(unique),
            distances=distances,
            candidates=candidates,
        )

    async def _rank_with_ai(self, prepared: _Prepared) -> List[RankedShelter]:
        assert self._ranker is not None
        request = RankingRequest(
            disaster_type=prepared.disaster_type,
            user_location=prepared.user,
            candidates=list(prepared.candidates),
            criteria_text=criteria_text(prepared.disaster_type),
        )

        start = time.time()
        outcome = "error"
        try:
            payload = await asyncio.wait_for(self._ranker.rank(request), timeout=self._timeout_seconds)
            outcome = "ok"
        except asyncio.TimeoutError as exc:
            outcome = "timeout"
            raise RankingUnavailable("timeout", f"no response within {self._timeout_seconds}s") from exc
        except RankingUnavailable:
            raise
        except Exception as exc:  # noqa: BLE001
            raise RankingUnavailable("ranker_error", f"{type(exc).__name__}: {exc}") from exc
        finally:
            ranking_latency_metric.labels(outcome=outcome).observe(time.time() - start)

        entries = validate_entries(parse_ranking_payload(payload), set(request.candidate_ids))
        if not entries:
            raise RankingUnavailable("no_valid_entries")
        return self._merge(prepared, entries)

    def _merge(self, prepared: _Prepared, entries: Sequence[RankingEntry]) -> List[RankedShelter]:
        by_id = {candidate.shelter.id: candidate for candidate in prepared.candidates}
        total = len(prepared.valid)
        disaster = prepared.disaster_type.value
        merged: List[RankedShelter] = []
        for entry in entries:
            candidate = by_id[entry.id]
            score = entry.score if entry.score is not None else 1.0 - (entry.rank - 1) / total
            merged.append(
                RankedShelter.from_shelter(
                    candidate.shelter,
                    distance_km=candidate.distance_km,
                    score=score,
                    rank=entry.rank,
                    reason=entry.reason or f"Ranked #{entry.rank} for {disaster}",
                    source=RankingSource.AI,
                    ai_analysis=entry.reason,
                )
            )
        # 按名次升序，不按得分；同名次保持模型给出的顺序
        merged.sort(key=lambda shelter: shelter.rank)
        return merged

    def _fallback(self, prepared: _Prepared) -> List[RankedShelter]:
        """在完整有效集合上做确定性评分，名次按得分降序依次编号。"""
        return self._scorer.score(prepared.valid, prepared.disaster_type, prepared.user)
