from __future__ import annotations

from typing import List

import pytest

from emergency_shelter.errors import InvalidCoordinate, InvalidParameter
from emergency_shelter.geo.geomath import Location
from emergency_shelter.hazards.matcher import (
    HazardMatcher,
    assess_status,
    categorize,
    critical_hazards,
    find_nearby,
)
from emergency_shelter.hazards.models import AreaHazard, HazardCategory, PointHazard, Severity
from emergency_shelter.shelters.models import DisasterType

USER = Location(latitude=37.323, longitude=-122.0322)
RING = [[-122.2, 37.2], [-121.9, 37.2], [-121.9, 37.5], [-122.2, 37.5], [-122.2, 37.2]]
FAR_RING = [[-100.0, 40.0], [-99.0, 40.0], [-99.0, 41.0], [-100.0, 41.0]]


def _quake(quake_id: str, latitude: float, longitude: float, magnitude: float | None) -> PointHazard:
    return PointHazard(
        id=quake_id,
        location=Location(latitude=latitude, longitude=longitude),
        magnitude=magnitude,
        title=f"M {magnitude} quake",
    )


def _alert(alert_id: str, event: str, severity: str, ring: list | None = None) -> AreaHazard:
    return AreaHazard(
        id=alert_id,
        kind=categorize(event),
        event=event,
        polygon=tuple(ring if ring is not None else RING),
        severity=severity,
    )


def test_earthquakes_sorted_by_magnitude_then_alerts_by_severity() -> None:
    quakes = [
        _quake("q-small", 37.40, -122.10, 2.8),
        _quake("q-big", 37.35, -122.05, 3.2),
        _quake("q-far", 34.05, -118.24, 6.0),
    ]
    alerts = [
        _alert("a-minor", "Wind Advisory", "Minor"),
        _alert("a-extreme", "Flash Flood Warning", "Extreme"),
        _alert("a-far", "Tornado Warning", "Extreme", FAR_RING),
    ]

    nearby = find_nearby(USER, quakes, alerts, radius_km=50)

    assert [hazard.id for hazard in nearby] == ["q-big", "q-small", "a-extreme", "a-minor"]
    assert [hazard.magnitude for hazard in nearby[:2]] == [3.2, 2.8]
    assert nearby[0].distance_km is not None and nearby[0].distance_km < 50
    assert nearby[2].category is HazardCategory.FLOOD
    assert nearby[2].contains_user is True
    assert nearby[3].category is HazardCategory.STORM


def test_missing_user_location_returns_empty() -> None:
    assert find_nearby(None, [_quake("q", 37.3, -122.0, 4.0)], [_alert("a", "Flood Watch", "Severe")]) == []


@pytest.mark.parametrize("radius", [0, -5, float("nan")])
def test_non_positive_radius_rejected(radius: float) -> None:
    with pytest.raises(InvalidParameter):
        find_nearby(USER, [], [], radius_km=radius)


def test_radius_checked_before_missing_user() -> None:
    with pytest.raises(InvalidParameter):
        find_nearby(None, [], [], radius_km=0)


def test_invalid_user_location_raises() -> None:
    with pytest.raises(InvalidCoordinate):
        find_nearby(Location(latitude=95.0, longitude=0.0), [], [])


def test_invalid_items_are_skipped() -> None:
    quakes = [
        _quake("q-bad", 120.0, -122.0, 5.0),
        _quake("q-ok", 37.33, -122.03, None),
    ]
    alerts = [
        _alert("a-degenerate", "Flood Warning", "Severe", [[-122.0, 37.3], ["x", "y"]]),
        _alert("a-ok", "Red Flag Warning", "Moderate"),
    ]
    nearby = find_nearby(USER, quakes, alerts)
    assert [hazard.id for hazard in nearby] == ["q-ok", "a-ok"]
    assert nearby[1].category is HazardCategory.WILDFIRE


def test_alerts_ignore_radius() -> None:
    # 面状预警只看外包框包含，与半径无关
    nearby = HazardMatcher(default_radius_km=1.0).find_nearby(USER, [], [_alert("a", "Flood Warning", "Severe")])
    assert [hazard.id for hazard in nearby] == ["a"]


def test_equal_severity_keeps_input_order() -> None:
    alerts = [_alert(f"a{i}", "Flood Watch", "Moderate") for i in range(4)]
    assert [hazard.id for hazard in find_nearby(USER, [], alerts)] == ["a0", "a1", "a2", "a3"]


@pytest.mark.parametrize(
    ("event", "source_type", "expected"),
    [
        ("Flash Flood Warning", None, HazardCategory.FLOOD),
        ("Red Flag Warning", None, HazardCategory.WILDFIRE),
        ("Tornado Watch", None, HazardCategory.TORNADO),
        ("Severe Thunderstorm Warning", None, HazardCategory.STORM),
        ("Hurricane Warning", None, HazardCategory.STORM),
        ("Heat Advisory", None, HazardCategory.OTHER),
        ("anything", "earthquake", HazardCategory.EARTHQUAKE),
        # flood 关键字优先于 storm
        ("Coastal Flood and Storm Surge Warning", None, HazardCategory.FLOOD),
    ],
)
def test_categorize(event: str, source_type: str | None, expected: HazardCategory) -> None:
    assert categorize(event, source_type) is expected


def test_severity_parse_is_case_insensitive() -> None:
    assert Severity.parse("severe") is Severity.SEVERE
    assert Severity.parse("bogus") is Severity.UNKNOWN
    assert Severity.parse(None).rank == 0


def test_critical_hazards_and_status() -> None:
    alerts = [
        _alert("flood", "Flood Warning", "Severe"),
        _alert("wind", "Wind Advisory", "Minor"),
    ]
    nearby = find_nearby(USER, [], alerts)

    assert critical_hazards(nearby) == []
    assert [hazard.id for hazard in critical_hazards(nearby, DisasterType.FLOOD)] == ["flood"]
    assert {hazard.id for hazard in critical_hazards(nearby, "hurricane")} == {"flood", "wind"}

    assert assess_status(nearby).level == "warning"
    status = assess_status(nearby, DisasterType.FLOOD)
    assert (status.level, status.total, status.critical) == ("active", 2, 1)
    assert assess_status([]).level == "safe"


def test_earthquake_is_always_critical() -> None:
    nearby: List = find_nearby(USER, [_quake("q", 37.33, -122.03, 3.0)], [])
    assert nearby[0].is_earthquake
    assert assess_status(nearby).level == "active"


def test_module_level_find_nearby_uses_default_radius() -> None:
    quakes = [_quake("q-near", 37.35, -122.05, 3.0), _quake("q-far", 34.05, -118.24, 6.0)]

    assert HazardMatcher().find_nearby(USER, quakes, []) == find_nearby(USER, quakes, [])
    assert [hazard.id for hazard in find_nearby(USER, quakes, [])] == ["q-near"]


def test_missing_magnitude_sorts_below_negative_magnitude() -> None:
    quakes = [
        _quake("q-unknown", 37.33, -122.03, None),
        _quake("q-negative", 37.34, -122.04, -0.5),
        _quake("q-positive", 37.35, -122.05, 1.2),
    ]

    nearby = find_nearby(USER, quakes, [])

    assert [hazard.id for hazard in nearby] == ["q-positive", "q-negative", "q-unknown"]
