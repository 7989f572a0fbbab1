# Copyright 2025 msq
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import structlog

from emergency_shelter.geo.geomath import Location
from emergency_shelter.hazards.matcher import HazardMatcher
from emergency_shelter.hazards.models import AreaHazard, NearbyHazard, PointHazard


@runtime_checkable
class HazardFeed(Protocol):
    """灾害数据源，返回已解析的结构化记录。"""

    async def fetch_earthquakes(self) -> Sequence[PointHazard]:
        ...

    async def fetch_area_hazards(self) -> Sequence[AreaHazard]:
        ...


@dataclass(frozen=True)
class HazardSnapshot:
    """某一时刻的灾害快照，刷新时整体替换。"""

    earthquakes: Tuple[PointHazard, ...]
    area_hazards: Tuple[AreaHazard, ...]
    refreshed_at: datetime


class HazardCache:
    """负责拉取并缓存灾害快照，供多个请求复用。

    读取方直接拿当前快照引用，不加锁；刷新在锁内完成后一次性替换引用，
    进行中的匹配计算始终使用调用时拿到的那一份快照。
    """

    def __init__(
        self,
        feed: HazardFeed,
        *,
        ttl_seconds: float,
        matcher: HazardMatcher | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds 必须大于 0")
        self._feed = feed
        self._ttl = timedelta(seconds=ttl_seconds)
        self._matcher = matcher or HazardMatcher()
        self._state: HazardSnapshot | None = None
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger(__name__)

    async def prefetch(self) -> None:
        """首次预热缓存。"""
        async with self._lock:
            await self._refresh_locked()

    async def get_snapshot(self, *, force_refresh: bool = False) -> HazardSnapshot:
        """返回当前有效快照，必要时自动刷新。"""
        state = self._state
        if not force_refresh and state is not None and not self._is_expired(state.refreshed_at):
            return state
        async with self._lock:
            if not force_refresh:
                state = self._state
                if state is not None and not self._is_expired(state.refreshed_at):
                    return state
            return await self._refresh_locked()

    async def refresh(self) -> HazardSnapshot:
        """主动刷新缓存。"""
        async with self._lock:
            return await self._refresh_locked()

    async def periodic_refresh(self, interval_seconds: float) -> None:
        """循环刷新任务；单次刷新失败保留旧快照。"""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds 必须大于 0")
        self._logger.info("hazard_cache_periodic_refresh_started", interval_seconds=interval_seconds)
        try:
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await self.refresh()
                except Exception as exc:  # noqa: BLE001
                    self._logger.error("hazard_cache_refresh_failed", error=str(exc))
        except asyncio.CancelledError:
            self._logger.info("hazard_cache_periodic_refresh_cancelled")
            raise

    def snapshot(self) -> HazardSnapshot | None:
        """返回当前缓存的快照，不触发刷新。"""
        return self._state

    async def nearby(self, user: Optional[Location], radius_km: Optional[float] = None) -> List[NearbyHazard]:
        """基于当前快照查找用户附近的灾害。"""
        snapshot = await self.get_snapshot()
        return self._matcher.find_nearby(user, snapshot.earthquakes, snapshot.area_hazards, radius_km)

    def _is_expired(self, refreshed_at: datetime) -> bool:
        return datetime.now(timezone.utc) - refreshed_at >= self._ttl

    async def _refresh_locked(self) -> HazardSnapshot:
        earthquakes, area_hazards = await asyncio.gather(
            self._feed.fetch_earthquakes(),
            self._feed.fetch_area_hazards(),
        )
        refreshed_at = datetime.now(timezone.utc)
        state = HazardSnapshot(
            earthquakes=tuple(earthquakes or ()),
            area_hazards=tuple(area_hazards or ()),
            refreshed_at=refreshed_at,
        )
        self._state = state
        self._logger.info(
            "hazard_cache_refreshed",
            earthquake_count=len(state.earthquakes),
            area_hazard_count=len(state.area_hazards),
            refreshed_at=refreshed_at.isoformat(),
        )
        return state
