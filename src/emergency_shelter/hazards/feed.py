# Copyright 2025 msq
"""GeoJSON 要素到灾害记录的最小转换，格式不合法的要素逐条跳过。"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

import structlog
from pydantic import ValidationError

from emergency_shelter.errors import DegenerateGeometry
from emergency_shelter.hazards.models import AreaHazard, PointHazard

logger = structlog.get_logger(__name__)


def _features(collection: Mapping[str, Any] | Iterable[Any] | None) -> List[Any]:
    if collection is None:
        return []
    if isinstance(collection, Mapping):
        return list(collection.get("features") or [])
    return list(collection)


def parse_earthquake_features(collection: Mapping[str, Any] | Iterable[Any] | None) -> List[PointHazard]:
    earthquakes: List[PointHazard] = []
    for feature in _features(collection):
        if not isinstance(feature, Mapping):
            logger.warning("earthquake_feature_skipped", reason="not_a_mapping")
            continue
        try:
            earthquakes.append(PointHazard.from_geojson(feature))
        except (DegenerateGeometry, ValidationError) as exc:
            logger.warning("earthquake_feature_skipped", feature_id=feature.get("id"), reason=str(exc))
    return earthquakes


def parse_alert_features(collection: Mapping[str, Any] | Iterable[Any] | None) -> List[AreaHazard]:
    """无面几何的预警（NWS 常见按区域编码发布）无法做包含判定，直接跳过。"""

    alerts: List[AreaHazard] = []
    for feature in _features(collection):
        if not isinstance(feature, Mapping):
            logger.warning("alert_feature_skipped", reason="not_a_mapping")
            continue
        try:
            alerts.append(AreaHazard.from_geojson(feature))
        except (DegenerateGeometry, ValidationError) as exc:
            logger.warning("alert_feature_skipped", feature_id=feature.get("id"), reason=str(exc))
    return alerts
