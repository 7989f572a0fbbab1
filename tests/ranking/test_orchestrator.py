from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional

import pytest

from emergency_shelter.errors import InvalidCoordinate, NoValidShelters, RankingUnavailable
from emergency_shelter.geo.geomath import Location
from emergency_shelter.ranking.models import RankingRequest
from emergency_shelter.ranking.orchestrator import RecommendationOrchestrator
from emergency_shelter.ranking.ranker import Ranker
from emergency_shelter.shelters.models import DisasterType, RankingSource
from emergency_shelter.shelters.scorer import ShelterScorer


class FakeRanker:
    """按预设返回值（或异常）响应，并记录收到的请求。"""

    def __init__(self, result: Any = None, *, error: Optional[BaseException] = None, delay: float = 0.0) -> None:
        self._result = result
        self._error = error
        self._delay = delay
        self.requests: List[RankingRequest] = []
        self.cancelled = False

    async def rank(self, request: RankingRequest) -> Any:
        self.requests.append(request)
        if self._delay:
            try:
                await asyncio.sleep(self._delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self._error is not None:
            raise self._error
        if callable(self._result):
            return self._result(request)
        return self._result


def _reverse_ranking(request: RankingRequest) -> str:
    """把候选按距离倒序排名，返回包裹在说明文字里的 JSON。"""
    ids = list(reversed(request.candidate_ids))
    entries = [
        {"id": shelter_id, "rank": index, "score": round(1 - index / 10, 2), "reason": f"choice {index}"}
        for index, shelter_id in enumerate(ids, start=1)
    ]
    return "Sure! Here are the rankings:\n```json\n" + json.dumps(entries) + "\n```"


def test_fake_ranker_satisfies_protocol() -> None:
    assert isinstance(FakeRanker(), Ranker)


@pytest.mark.asyncio
async def test_well_formed_response_sorted_by_rank(shelters, cupertino) -> None:
    ranker = FakeRanker(_reverse_ranking)
    orchestrator = RecommendationOrchestrator(ranker)

    results = await orchestrator.recommend(DisasterType.EARTHQUAKE, cupertino, shelters)

    assert [item.rank for item in results] == [1, 2, 3, 4]
    assert [item.id for item in results] == ["s4", "s3", "s2", "s1"]
    assert all(item.source is RankingSource.AI for item in results)
    assert results[0].ai_analysis == "choice 1"
    assert results[0].score == pytest.approx(0.9)
    assert results[-1].distance_km == pytest.approx(0.018, abs=0.001)

    request = ranker.requests[0]
    assert request.disaster_type is DisasterType.EARTHQUAKE
    assert "Structural integrity" in request.criteria_text


@pytest.mark.asyncio
async def test_ranker_failure_falls_back(shelters, cupertino) -> None:
    orchestrator = RecommendationOrchestrator(FakeRanker(error=RuntimeError("llm down")))

    results = await orchestrator.recommend("flood", cupertino, shelters)

    assert len(results) == len(shelters)
    assert all(item.source is RankingSource.FALLBACK for item in results)
    expected = ShelterScorer().score(shelters, DisasterType.FLOOD, cupertino)
    assert [item.id for item in results] == [item.id for item in expected]
    assert [item.rank for item in results] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_ranking_unavailable_falls_back(shelters, cupertino) -> None:
    orchestrator = RecommendationOrchestrator(FakeRanker(error=RankingUnavailable("llm_call_failed")))
    results = await orchestrator.recommend("wildfire", cupertino, shelters)
    assert {item.source for item in results} == {RankingSource.FALLBACK}


@pytest.mark.asyncio
async def test_timeout_cancels_ranker_and_falls_back(shelters, cupertino) -> None:
    ranker = FakeRanker(_reverse_ranking, delay=5.0)
    orchestrator = RecommendationOrchestrator(ranker, timeout_seconds=0.05)

    results = await orchestrator.recommend("tornado", cupertino, shelters)

    assert ranker.cancelled is True
    assert all(item.source is RankingSource.FALLBACK for item in results)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "",
        "I am unable to help with that.",
        "[]",
        {"id": "s1", "rank": 1},
        '[{"id": "ghost", "rank": 1}, {"id": "s1", "rank": 0}]',
    ],
)
async def test_unusable_responses_fall_back(payload: Any, shelters, cupertino) -> None:
    orchestrator = RecommendationOrchestrator(FakeRanker(payload))
    results = await orchestrator.recommend("earthquake", cupertino, shelters)
    assert len(results) == len(shelters)
    assert all(item.source is RankingSource.FALLBACK for item in results)


@pytest.mark.asyncio
async def test_no_ranker_uses_fallback(shelters, cupertino) -> None:
    results = await RecommendationOrchestrator(None).recommend("none", cupertino, shelters)
    assert all(item.source is RankingSource.FALLBACK for item in results)


@pytest.mark.asyncio
async def test_partial_response_defaults_score_and_reason(shelters, cupertino) -> None:
    payload = [
        {"id": "s2", "rank": 2},
        {"id": "s1", "rank": 1, "reason": "closest"},
        {"id": "unknown", "rank": 3},
    ]
    results = await RecommendationOrchestrator(FakeRanker(payload)).recommend("flood", cupertino, shelters)

    assert [item.id for item in results] == ["s1", "s2"]
    # 缺省得分按全部有效避难所数量计算：1 - (rank-1)/N
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.75)
    assert results[0].reason == "closest"
    assert results[1].reason == "Ranked #2 for flood"
    assert results[1].ai_analysis is None


@pytest.mark.asyncio
async def test_percentage_scores_replaced_by_rank_defaults(shelters, cupertino) -> None:
    payload = [{"id": f"s{rank}", "rank": rank, "score": 95} for rank in range(1, 5)]
    results = await RecommendationOrchestrator(FakeRanker(payload)).recommend("flood", cupertino, shelters)

    assert all(item.source is RankingSource.AI for item in results)
    assert [item.score for item in results] == pytest.approx([1.0, 0.75, 0.5, 0.25])


@pytest.mark.asyncio
async def test_candidate_set_limited_to_nearest(make_shelter, cupertino) -> None:
    many = [make_shelter(f"m{i}", 37.323 + 0.01 * (12 - i), -122.0322) for i in range(12)]
    ranker = FakeRanker(error=RuntimeError("force fallback"))
    orchestrator = RecommendationOrchestrator(ranker, candidate_limit=10)

    results = await orchestrator.recommend("earthquake", cupertino, many)

    request = ranker.requests[0]
    assert len(request.candidates) == 10
    assert request.candidate_ids[0] == "m11"
    assert "m0" not in request.candidate_ids
    assert "m1" not in request.candidate_ids
    # 兜底评分覆盖完整有效集合，不受候选上限影响
    assert len(results) == 12


@pytest.mark.asyncio
async def test_invalid_shelters_filtered(make_shelter, cupertino) -> None:
    mixed = [
        make_shelter("", 37.33, -122.03),
        make_shelter("no-name", 37.33, -122.03, name="  "),
        make_shelter("bad-coords", 300.0, -122.03),
        make_shelter("ok", 37.33, -122.03),
    ]
    results = await RecommendationOrchestrator(None).recommend("flood", cupertino, mixed)
    assert [item.id for item in results] == ["ok"]


@pytest.mark.asyncio
async def test_no_valid_shelters_raises(make_shelter, cupertino) -> None:
    with pytest.raises(NoValidShelters) as exc_info:
        await RecommendationOrchestrator(FakeRanker("[]")).recommend(
            "flood", cupertino, [make_shelter("x", None, None)]
        )
    assert exc_info.value.total == 1
    with pytest.raises(NoValidShelters):
        await RecommendationOrchestrator(None).recommend("flood", cupertino, [])


@pytest.mark.asyncio
async def test_invalid_user_location_raises(shelters) -> None:
    with pytest.raises(InvalidCoordinate):
        await RecommendationOrchestrator(None).recommend("flood", Location(latitude=-91.0, longitude=0.0), shelters)


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_interfere(shelters, cupertino) -> None:
    orchestrator = RecommendationOrchestrator(FakeRanker(_reverse_ranking))
    fallback = RecommendationOrchestrator(FakeRanker(error=RuntimeError("boom")))

    ai_results, fb_results = await asyncio.gather(
        orchestrator.recommend("earthquake", cupertino, shelters),
        fallback.recommend("flood", cupertino, shelters),
    )
    assert {item.source for item in ai_results} == {RankingSource.AI}
    assert {item.source for item in fb_results} == {RankingSource.FALLBACK}


def test_constructor_validates_arguments() -> None:
    with pytest.raises(TypeError):
        RecommendationOrchestrator(object())  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        RecommendationOrchestrator(None, candidate_limit=0)
    with pytest.raises(ValueError):
        RecommendationOrchestrator(None, timeout_seconds=0)
