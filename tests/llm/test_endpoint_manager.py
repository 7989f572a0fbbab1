from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from emergency_shelter.llm.client import FailoverAsyncLLMClient
from emergency_shelter.llm.endpoint_manager import (
    LLMEndpointConfig,
    LLMEndpointError,
    LLMEndpointManager,
)


class _StubAsyncClient:
    """异步客户端桩：根据预设队列返回结果或抛出异常。"""

    def __init__(self, name: str, queue: List[Any]) -> None:
        self._name = name
        self._queue = queue
        self.chat = SimpleNamespace(
            completions=SimpleNamespace(create=self._create),
        )

    async def _create(self, *args: Any, **kwargs: Any) -> Any:
        if not self._queue:
            raise RuntimeError(f"{self._name} queue exhausted")
        action = self._queue.pop(0)
        if isinstance(action, Exception):
            raise action
        if isinstance(action, float):
            await asyncio.sleep(action)
            return {"provider": self._name, "slept": action}
        return action


class _RateLimited(RuntimeError):
    status_code = 429


def _build_manager(
    primary_responses: List[Any],
    backup_responses: List[Any],
    *,
    request_timeout: float = 5.0,
) -> LLMEndpointManager:
    """构建带有桩客户端的端点管理器。"""

    queues: Dict[str, List[Any]] = {
        "primary": primary_responses,
        "backup": backup_responses,
    }

    endpoints = [
        LLMEndpointConfig(name="backup", base_url="https://backup", api_key="k2", priority=80),
        LLMEndpointConfig(name="primary", base_url="https://primary", api_key="k1", priority=100),
    ]

    def build_async(endpoint: LLMEndpointConfig) -> _StubAsyncClient:
        return _StubAsyncClient(endpoint.name, queues[endpoint.name])

    return LLMEndpointManager(
        endpoints,
        client_builder=build_async,
        failure_threshold=2,
        recovery_seconds=30,
        request_timeout=request_timeout,
    )


def test_endpoints_ordered_by_priority() -> None:
    assert _build_manager([], []).endpoint_names() == ["primary", "backup"]


@pytest.mark.asyncio
async def test_primary_success() -> None:
    manager = _build_manager([{"provider": "primary"}], [{"provider": "backup"}])
    client = FailoverAsyncLLMClient(manager)
    result = await client.chat.completions.create(model="m", messages=[{"role": "user", "content": "hi"}])
    assert result["provider"] == "primary"


@pytest.mark.asyncio
async def test_single_attempt_per_call_then_breaker_opens() -> None:
    manager = _build_manager(
        primary_responses=[RuntimeError("boom"), RuntimeError("boom")],
        backup_responses=[{"provider": "backup"}],
    )
    client = FailoverAsyncLLMClient(manager)

    # 每次调用只尝试一个端点，失败直接抛出
    for _ in range(2):
        with pytest.raises(LLMEndpointError) as exc_info:
            await client.chat.completions.create(model="m", messages=[])
        assert exc_info.value.endpoint == "primary"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    snapshot = manager.status_snapshot()
    assert snapshot["primary"]["available"] is False
    assert snapshot["backup"]["available"] is True

    result = await client.chat.completions.create(model="m", messages=[])
    assert result["provider"] == "backup"


@pytest.mark.asyncio
async def test_rate_limit_trips_breaker_immediately() -> None:
    manager = _build_manager([_RateLimited("slow down")], [{"provider": "backup"}])

    with pytest.raises(LLMEndpointError):
        await FailoverAsyncLLMClient(manager).chat.completions.create(model="m", messages=[])
    assert manager.status_snapshot()["primary"]["available"] is False


@pytest.mark.asyncio
async def test_timeout_counts_as_failure() -> None:
    manager = _build_manager([1.0], [], request_timeout=0.05)

    with pytest.raises(LLMEndpointError) as exc_info:
        await FailoverAsyncLLMClient(manager).chat.completions.create(model="m", messages=[])
    assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
    assert manager.status_snapshot()["primary"]["failures"] == 1


@pytest.mark.asyncio
async def test_half_open_recovery_after_window() -> None:
    manager = _build_manager(
        primary_responses=[RuntimeError("boom"), RuntimeError("boom"), {"provider": "primary"}],
        backup_responses=[],
    )
    client = FailoverAsyncLLMClient(manager)
    for _ in range(2):
        with pytest.raises(LLMEndpointError):
            await client.chat.completions.create(model="m", messages=[])

    # 人为把恢复时间拨到过去，下一次调用以半开状态试探主端点
    manager._states["primary"].recovery_at = time.time() - 1
    result = await client.chat.completions.create(model="m", messages=[])
    assert result["provider"] == "primary"
    snapshot = manager.status_snapshot()["primary"]
    assert snapshot["available"] is True
    assert snapshot["half_open"] is False
    assert snapshot["failures"] == 0


def test_requires_endpoints() -> None:
    with pytest.raises(ValueError):
        LLMEndpointManager([], client_builder=lambda endpoint: None)  # type: ignore[arg-type,return-value]
