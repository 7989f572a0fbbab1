# Copyright 2025 msq
"""引擎装配：按 AppConfig 组装匹配器、评分器、LLM 排序器与编排器。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

import structlog

from emergency_shelter.config import AppConfig
from emergency_shelter.geo.geomath import Location
from emergency_shelter.hazards.matcher import HazardMatcher, HazardStatus, assess_status
from emergency_shelter.hazards.models import AreaHazard, NearbyHazard, PointHazard
from emergency_shelter.hazards.service import HazardCache, HazardFeed
from emergency_shelter.llm.client import get_async_openai_client
from emergency_shelter.logging import configure_logging
from emergency_shelter.ranking.guidance import GuidanceConfig, ShelterAdvisor, ShelterAnalysis
from emergency_shelter.ranking.llm_ranker import LLMRankerConfig, LLMShelterRanker
from emergency_shelter.ranking.orchestrator import RecommendationOrchestrator
from emergency_shelter.ranking.ranker import Ranker
from emergency_shelter.shelters.catalog import ShelterCatalog
from emergency_shelter.shelters.models import DisasterType, RankedShelter, Shelter
from emergency_shelter.shelters.scorer import NARROW_DISTANCE_CAP_KM, WIDE_DISTANCE_CAP_KM, ShelterScorer

logger = structlog.get_logger(__name__)

_DISTANCE_CAPS = {
    "wide": WIDE_DISTANCE_CAP_KM,
    "narrow": NARROW_DISTANCE_CAP_KM,
}


@dataclass
class ShelterEngine:
    """对外的组合入口，各协作者均可单独替换。"""

    config: AppConfig
    matcher: HazardMatcher
    scorer: ShelterScorer
    orchestrator: RecommendationOrchestrator
    catalog: Optional[ShelterCatalog] = None
    hazard_cache: Optional[HazardCache] = None
    advisor: ShelterAdvisor = field(default_factory=ShelterAdvisor)

    @classmethod
    def from_config(
        cls,
        config: Optional[AppConfig] = None,
        *,
        ranker: Optional[Ranker] = None,
        catalog: Optional[ShelterCatalog] = None,
        feed: Optional[HazardFeed] = None,
        use_llm: bool = True,
    ) -> "ShelterEngine":
        """按配置装配引擎。

        未显式传入 ranker 且 use_llm 为真时，基于配置的端点构建 LLM 排序器；
        use_llm 为假则只使用确定性评分。
        """

        cfg = config or AppConfig.load_from_env()
        configure_logging(json_logs=cfg.log_json, log_level=cfg.log_level)

        matcher = HazardMatcher(default_radius_km=cfg.hazard_radius_km)
        scorer = ShelterScorer(distance_cap_km=_DISTANCE_CAPS[cfg.scorer_distance_cap])
        advisor = ShelterAdvisor()
        if use_llm:
            client = get_async_openai_client(cfg)
            if ranker is None:
                ranker = LLMShelterRanker(
                    config=LLMRankerConfig(
                        model=cfg.llm_model,
                        temperature=cfg.ranking_temperature,
                        max_tokens=cfg.ranking_max_tokens,
                    ),
                    client=client,
                )
            advisor = ShelterAdvisor(config=GuidanceConfig(model=cfg.llm_model), client=client)
        orchestrator = RecommendationOrchestrator(
            ranker,
            scorer,
            candidate_limit=cfg.ranking_candidate_limit,
            timeout_seconds=cfg.ranking_timeout_seconds,
        )
        hazard_cache = None
        if feed is not None:
            hazard_cache = HazardCache(feed, ttl_seconds=cfg.hazard_cache_ttl_seconds, matcher=matcher)

        logger.info(
            "shelter_engine_initialized",
            ranker=type(ranker).__name__ if ranker is not None else None,
            distance_cap_km=scorer.distance_cap_km,
            catalog_size=len(catalog) if catalog is not None else 0,
            hazard_feed=feed is not None,
        )
        return cls(
            config=cfg,
            matcher=matcher,
            scorer=scorer,
            orchestrator=orchestrator,
            catalog=catalog,
            hazard_cache=hazard_cache,
            advisor=advisor,
        )

    def find_nearby(
        self,
        user: Optional[Location],
        earthquakes: Optional[Iterable[PointHazard]],
        area_hazards: Optional[Iterable[AreaHazard]],
        radius_km: Optional[float] = None,
    ) -> List[NearbyHazard]:
        return self.matcher.find_nearby(user, earthquakes, area_hazards, radius_km)

    async def nearby_hazards(self, user: Optional[Location], radius_km: Optional[float] = None) -> List[NearbyHazard]:
        """基于缓存快照查找附近灾害。"""
        if self.hazard_cache is None:
            raise RuntimeError("未配置灾害数据源")
        return await self.hazard_cache.nearby(user, radius_km)

    async def hazard_status(
        self,
        user: Optional[Location],
        disaster_type: DisasterType | str | None = None,
        radius_km: Optional[float] = None,
    ) -> HazardStatus:
        hazards = await self.nearby_hazards(user, radius_km)
        return assess_status(hazards, disaster_type)

    def score(
        self,
        shelters: Iterable[Shelter],
        disaster_type: DisasterType | str,
        user: Location,
    ) -> List[RankedShelter]:
        return self.scorer.score(shelters, disaster_type, user)

    async def recommend(
        self,
        disaster_type: DisasterType | str,
        user: Location,
        shelters: Optional[Iterable[Shelter]] = None,
    ) -> List[RankedShelter]:
        """推荐避难所；未传入 shelters 时取目录中用户附近的避难所。"""
        if shelters is None:
            shelters = self._catalog_candidates(user)
        return await self.orchestrator.recommend(disaster_type, user, shelters)

    async def disaster_guidance(self, disaster_type: DisasterType | str | None) -> str:
        return await self.advisor.disaster_guidance(disaster_type)

    async def analyze_shelter(
        self,
        shelter: Shelter,
        disaster_type: DisasterType | str | None,
        user: Location,
    ) -> ShelterAnalysis:
        return await self.advisor.analyze_shelter(shelter, disaster_type, user)

    def _catalog_candidates(self, user: Location) -> Sequence[Shelter]:
        if self.catalog is None:
            raise RuntimeError("未配置避难所目录")
        nearby = self.catalog.within(user, self.config.nearby_shelter_radius_km)
        if nearby:
            return nearby
        # 附近没有避难所时退回整个目录，距离评分会自然压低远处的条目
        logger.warning(
            "shelter_catalog_no_nearby",
            radius_km=self.config.nearby_shelter_radius_km,
            catalog_size=len(self.catalog),
        )
        return self.catalog.shelters
