from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from emergency_shelter.geo.geomath import Location
from emergency_shelter.shelters.catalog import ShelterCatalog
from emergency_shelter.shelters.models import StructureType

RECORDS = [
    {
        "id": "sf_school_1",
        "name": "Cupertino High School",
        "type": "High School",
        "latitude": 37.323,
        "longitude": -122.032,
        "capacity": 800,
        "elevation": 70,
        "features": ["Parking", "Emergency Power"],
    },
    {
        "id": 42,
        "name": "Fire Station 42",
        "type": "Fire Station",
        "latitude": 37.40,
        "longitude": -122.10,
    },
    {
        "id": "far_away",
        "name": "LA Convention Center",
        "type": "Convention Center",
        "latitude": 34.04,
        "longitude": -118.27,
    },
    {"id": "broken", "name": "Broken", "capacity": -5},
    {"id": "sf_school_1", "name": "Duplicate", "latitude": 0.0, "longitude": 0.0},
]

USER = Location(latitude=37.323, longitude=-122.0322)


def test_from_records_skips_invalid_and_enriches() -> None:
    catalog = ShelterCatalog.from_records(RECORDS)

    assert len(catalog) == 4
    school = catalog.get("sf_school_1")
    assert school is not None and school.name == "Cupertino High School"
    assert school.structure_type is StructureType.CONCRETE
    assert school.safety_rating is not None
    assert catalog.get("42") is not None


def test_nearest_and_within() -> None:
    catalog = ShelterCatalog.from_records(RECORDS)

    nearest = catalog.nearest(USER)
    assert nearest is not None
    shelter, distance = nearest
    assert shelter.id == "sf_school_1"
    assert distance == pytest.approx(0.018, abs=0.001)

    assert {shelter.id for shelter in catalog.within(USER)} == {"sf_school_1", "42"}
    assert len(catalog.within(None)) == len(catalog)


def test_empty_catalog_has_no_nearest() -> None:
    assert ShelterCatalog([]).nearest(USER) is None


def test_load_validates_schema(tmp_path: Path) -> None:
    good = tmp_path / "shelters.json"
    good.write_text(json.dumps({"version": "1", "shelters": RECORDS[:3]}), encoding="utf-8")
    assert len(ShelterCatalog.load(good)) == 3

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"items": []}), encoding="utf-8")
    with pytest.raises(jsonschema.ValidationError):
        ShelterCatalog.load(bad)
