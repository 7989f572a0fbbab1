"""避难所数据、富化与确定性评分模块入口。"""

from __future__ import annotations

from .models import (  # noqa: F401
    DisasterType,
    RankedShelter,
    RankingSource,
    ScoreBreakdown,
    Shelter,
    StructureType,
)
from .enrichment import enrich, enrich_all  # noqa: F401
from .catalog import ShelterCatalog  # noqa: F401
from .scorer import (  # noqa: F401
    CRITERIA_PROFILES,
    NARROW_DISTANCE_CAP_KM,
    WIDE_DISTANCE_CAP_KM,
    CriteriaProfile,
    ShelterScorer,
)
