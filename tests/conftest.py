from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, os.fspath(ROOT / "src"))

from emergency_shelter.geo.geomath import Location  # noqa: E402
from emergency_shelter.shelters.enrichment import enrich  # noqa: E402
from emergency_shelter.shelters.models import Shelter  # noqa: E402


# 配置pytest-anyio只使用asyncio后端（避免trio依赖）
@pytest.fixture(scope="session")
def anyio_backend():
    """配置pytest-anyio只使用asyncio后端"""
    return "asyncio"


def _make_shelter(shelter_id: str, latitude: float | None, longitude: float | None, **fields: Any) -> Shelter:
    payload: Dict[str, Any] = {
        "id": shelter_id,
        "name": fields.pop("name", f"Shelter {shelter_id}"),
        "type": fields.pop("type", "Community Center"),
        "latitude": latitude,
        "longitude": longitude,
    }
    payload.update(fields)
    return enrich(Shelter(**payload))


@pytest.fixture
def make_shelter():
    """构造已富化的避难所。"""
    return _make_shelter


@pytest.fixture
def cupertino() -> Location:
    return Location(latitude=37.323, longitude=-122.0322)


@pytest.fixture
def shelters() -> list[Shelter]:
    """库比蒂诺附近的一组避难所，距离由近到远。"""
    return [
        _make_shelter("s1", 37.323, -122.032, type="High School", capacity=800, elevation=70),
        _make_shelter("s2", 37.330, -122.040, type="Fire Station", capacity=120, elevation=90),
        _make_shelter("s3", 37.350, -122.060, type="Senior Center", capacity=150, elevation=40),
        _make_shelter("s4", 37.400, -122.100, type="Public Library", capacity=300),
    ]
