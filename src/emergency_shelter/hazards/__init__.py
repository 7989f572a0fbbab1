"""灾害记录、附近灾害匹配与快照缓存模块入口。"""

from __future__ import annotations

from .models import (  # noqa: F401
    AreaHazard,
    HazardCategory,
    NearbyHazard,
    PointHazard,
    Severity,
)
from .matcher import (  # noqa: F401
    HazardMatcher,
    HazardStatus,
    assess_status,
    categorize,
    critical_hazards,
    find_nearby,
)
from .feed import parse_alert_features, parse_earthquake_features  # noqa: F401
from .service import HazardCache, HazardFeed, HazardSnapshot  # noqa: F401
