"""地理计算模块入口。"""

from __future__ import annotations

from .geomath import (  # noqa: F401
    EARTH_RADIUS_KM,
    BoundingBox,
    Location,
    bounding_box,
    bounding_box_contains,
    distance_km,
    ensure_valid,
    geometry_centroid,
    is_nearby,
    is_valid_location,
    outer_ring,
    polygon_centroid,
)
