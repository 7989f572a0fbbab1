"""避难所排序：外部排序接口、响应解析与推荐编排。"""

from __future__ import annotations

from .models import CandidateShelter, RankingEntry, RankingRequest  # noqa: F401
from .parser import extract_json_array, parse_ranking_payload, validate_entries  # noqa: F401
from .prompts import DISASTER_CRITERIA, build_messages, criteria_text  # noqa: F401
from .ranker import Ranker, RankingPayload  # noqa: F401
from .orchestrator import RecommendationOrchestrator  # noqa: F401
from .guidance import DEFAULT_GUIDANCE, ShelterAdvisor, ShelterAnalysis, base_score, default_guidance  # noqa: F401
