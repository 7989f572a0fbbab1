# Copyright 2025 msq
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import jsonschema
import structlog
from pydantic import ValidationError

from emergency_shelter.errors import InvalidCoordinate
from emergency_shelter.geo.geomath import Location, distance_km, ensure_valid, is_nearby
from emergency_shelter.shelters.enrichment import enrich_all
from emergency_shelter.shelters.models import Shelter

logger = structlog.get_logger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "shelter_catalog_schema.json"
DEFAULT_NEARBY_RADIUS_KM = 25.0


class ShelterCatalog:
    """避难所目录：启动时加载一次，之后只读。

    内部以 tuple 保存已富化的避难所，调用方拿到的是同一份不可变快照。
    """

    def __init__(self, shelters: Iterable[Shelter]) -> None:
        self._shelters: Tuple[Shelter, ...] = enrich_all(shelters)
        self._by_id: Dict[str, Shelter] = {}
        for shelter in self._shelters:
            # 重复 id 保留第一条
            self._by_id.setdefault(shelter.id, shelter)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ShelterCatalog":
        """从结构化记录构建，字段不合法的记录跳过并记录告警。"""

        shelters: List[Shelter] = []
        skipped = 0
        for index, record in enumerate(records):
            try:
                shelters.append(Shelter.model_validate(record))
            except ValidationError as exc:
                skipped += 1
                logger.warning(
                    "shelter_record_invalid",
                    index=index,
                    shelter_id=record.get("id") if isinstance(record, Mapping) else None,
                    errors=exc.errors(include_url=False),
                )
        logger.info("shelter_catalog_built", loaded=len(shelters), skipped=skipped)
        return cls(shelters)

    @classmethod
    def load(cls, path: Path, *, schema_path: Path | None = None) -> "ShelterCatalog":
        """从 JSON 文件加载目录，先做 JSON Schema 校验再逐条解析。"""

        with Path(schema_path or DEFAULT_SCHEMA_PATH).open("r", encoding="utf-8") as fh:
            schema = json.load(fh)
        with Path(path).open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        jsonschema.validate(instance=data, schema=schema)
        catalog = cls.from_records(data["shelters"])
        logger.info("shelter_catalog_loaded", path=str(path), count=len(catalog))
        return catalog

    @property
    def shelters(self) -> Tuple[Shelter, ...]:
        return self._shelters

    def __len__(self) -> int:
        return len(self._shelters)

    def __iter__(self) -> Iterator[Shelter]:
        return iter(self._shelters)

    def get(self, shelter_id: str) -> Optional[Shelter]:
        return self._by_id.get(shelter_id)

    def nearest(self, user: Location) -> Optional[Tuple[Shelter, float]]:
        """最近的避难所及其距离；目录为空或全部坐标无效时返回 None。"""

        ensure_valid(user)
        best: Optional[Tuple[Shelter, float]] = None
        for shelter, distance in self._with_distances(user):
            if best is None or distance < best[1]:
                best = (shelter, distance)
        return best

    def within(self, user: Optional[Location], radius_km: float = DEFAULT_NEARBY_RADIUS_KM) -> Sequence[Shelter]:
        """半径内的避难所；未知用户位置时返回整个目录。"""

        if user is None:
            return self._shelters
        ensure_valid(user)
        return [
            shelter
            for shelter in self._shelters
            if shelter.location is not None and self._safe_nearby(user, shelter, radius_km)
        ]

    def _with_distances(self, user: Location) -> Iterator[Tuple[Shelter, float]]:
        for shelter in self._shelters:
            location = shelter.location
            if location is None:
                continue
            try:
                yield shelter, distance_km(user, location)
            except InvalidCoordinate:
                logger.warning("shelter_coordinates_invalid", shelter_id=shelter.id)

    @staticmethod
    def _safe_nearby(user: Location, shelter: Shelter, radius_km: float) -> bool:
        try:
            return is_nearby(user, shelter.location, radius_km)
        except InvalidCoordinate:
            logger.warning("shelter_coordinates_invalid", shelter_id=shelter.id)
            return False
