# Copyright 2025 msq
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterable, List, TypeVar

import structlog
from openai import AsyncOpenAI

if TYPE_CHECKING:
    from emergency_shelter.config import AppConfig

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class LLMEndpointError(RuntimeError):
    """单次LLM调用失败（含超时）时抛出，附带端点状态快照。"""

    def __init__(self, operation: str, endpoint: str, states: Dict[str, Dict[str, object]]) -> None:
        super().__init__(f"LLM call {operation} failed on endpoint {endpoint}")
        self.operation = operation
        self.endpoint = endpoint
        self.states = states


@dataclass(frozen=True)
class LLMEndpointConfig:
    """LLM端点配置。

    Attributes:
        name: 端点名称（用于日志与监控）。
        base_url: 模型服务的Base URL。
        api_key: 调用该端点时使用的API Key。
        priority: 优先级，数值越大优先选用。
    """

    name: str
    base_url: str
    api_key: str
    priority: int = 100


@dataclass
class LLMEndpointState:
    """LLM端点运行状态（熔断器）。"""

    available: bool = True
    consecutive_failures: int = 0
    half_open: bool = False
    recovery_at: float = 0.0


class LLMEndpointManager:
    """LLM端点管理器：按优先级选端点，失败累计到阈值后熔断，到期半开恢复。

    每次调用只尝试一个端点，不在请求内重试；失败直接抛出 LLMEndpointError，
    由上层决定兜底策略。下一次调用会自动避开已熔断的端点。
    """

    def __init__(
        self,
        endpoints: List[LLMEndpointConfig],
        *,
        client_builder: Callable[[LLMEndpointConfig], AsyncOpenAI],
        failure_threshold: int = 3,
        recovery_seconds: int = 60,
        max_concurrency: int = 5,
        request_timeout: float = 12.0,
    ) -> None:
        if not endpoints:
            raise ValueError("至少需要一个LLM端点配置")

        self._order: List[LLMEndpointConfig] = sorted(endpoints, key=lambda e: e.priority, reverse=True)
        self._states: Dict[str, LLMEndpointState] = {endpoint.name: LLMEndpointState() for endpoint in self._order}
        self._failure_threshold = max(1, failure_threshold)
        self._recovery_seconds = max(1, recovery_seconds)
        self._client_builder = client_builder
        self._request_timeout = float(request_timeout)
        self._clients: Dict[str, AsyncOpenAI] = {}
        self._lock = threading.Lock()
        self._max_concurrency = max(1, int(max_concurrency))
        self._semaphore = asyncio.Semaphore(self._max_concurrency)

        logger.info(
            "llm_endpoint_manager_initialized",
            endpoints=[e.name for e in self._order],
            failure_threshold=self._failure_threshold,
            recovery_seconds=self._recovery_seconds,
            max_concurrency=self._max_concurrency,
            request_timeout_seconds=self._request_timeout,
        )

    @classmethod
    def from_config(cls, cfg: "AppConfig") -> "LLMEndpointManager":
        return cls.from_endpoints(
            cfg.llm_endpoints,
            failure_threshold=cfg.llm_failure_threshold,
            recovery_seconds=cfg.llm_recovery_seconds,
            max_concurrency=cfg.llm_max_concurrency,
            request_timeout=cfg.ranking_timeout_seconds,
        )

    @classmethod
    def from_endpoints(
        cls,
        endpoints: Iterable[LLMEndpointConfig],
        *,
        failure_threshold: int,
        recovery_seconds: int,
        max_concurrency: int,
        request_timeout: float,
    ) -> "LLMEndpointManager":
        endpoint_list = list(endpoints)
        if not endpoint_list:
            raise ValueError("endpoints 不能为空")

        import httpx

        def build_async(endpoint: LLMEndpointConfig) -> AsyncOpenAI:
            timeout = httpx.Timeout(connect=5.0, read=request_timeout, write=request_timeout, pool=request_timeout)
            http_client = httpx.AsyncClient(trust_env=False, timeout=timeout)
            return AsyncOpenAI(
                base_url=endpoint.base_url,
                api_key=endpoint.api_key,
                http_client=http_client,
                timeout=request_timeout,
                max_retries=0,
            )

        return cls(
            endpoint_list,
            client_builder=build_async,
            failure_threshold=failure_threshold,
            recovery_seconds=recovery_seconds,
            max_concurrency=max_concurrency,
            request_timeout=request_timeout,
        )

    def _select_endpoint(self) -> LLMEndpointConfig:
        """选择一个可用端点，若都不可用则返回优先级最高的端点做最终尝试。"""
        now = time.time()
        for endpoint in self._order:
            state = self._states[endpoint.name]
            if not state.available and now >= state.recovery_at:
                # 到达恢复时间后以半开状态试探
                state.available = True
                state.half_open = True
            if state.available:
                return endpoint

        candidate = self._order[0]
        logger.warning("llm_all_endpoints_unavailable", fallback=candidate.name, states=self._snapshot())
        return candidate

    def _acquire_client(self, endpoint: LLMEndpointConfig) -> AsyncOpenAI:
        client = self._clients.get(endpoint.name)
        if client is None:
            client = self._client_builder(endpoint)
            self._clients[endpoint.name] = client
        return client

    def _on_success(self, endpoint: LLMEndpointConfig, latency_ms: int) -> None:
        state = self._states[endpoint.name]
        state.consecutive_failures = 0
        state.available = True
        state.half_open = False
        logger.info("llm_endpoint_success", endpoint=endpoint.name, latency_ms=latency_ms)

    def _on_failure(self, endpoint: LLMEndpointConfig, latency_ms: int, error: BaseException) -> None:
        state = self._states[endpoint.name]
        state.consecutive_failures += 1

        status_code = getattr(error, "status_code", None)
        is_rate_limit = status_code == 429
        cooldown = self._recovery_seconds * (2 if is_rate_limit else 1)

        # 半开试探失败立即重新熔断
        if state.half_open or is_rate_limit or state.consecutive_failures >= self._failure_threshold:
            state.available = False
            state.half_open = False
            state.recovery_at = time.time() + cooldown

        logger.warning(
            "llm_endpoint_failure",
            endpoint=endpoint.name,
            latency_ms=latency_ms,
            failure_count=state.consecutive_failures,
            marked_unavailable=not state.available,
            error=str(error) or type(error).__name__,
            rate_limited=is_rate_limit,
        )

    def _snapshot(self) -> Dict[str, Dict[str, object]]:
        return {
            name: {
                "available": state.available,
                "half_open": state.half_open,
                "failures": state.consecutive_failures,
                "recovery_at": state.recovery_at,
            }
            for name, state in self._states.items()
        }

    async def call_async(
        self,
        operation: str,
        caller: Callable[[AsyncOpenAI, LLMEndpointConfig], Awaitable[T]],
    ) -> T:
        """异步调用入口：选端点、限并发、限时，单次尝试。"""

        async with self._semaphore:
            with self._lock:
                endpoint = self._select_endpoint()
            client = self._acquire_client(endpoint)
            start = time.time()
            try:
                call = caller(client, endpoint)
                if self._request_timeout > 0:
                    result = await asyncio.wait_for(call, timeout=self._request_timeout)
                else:
                    result = await call
            except Exception as exc:  # noqa: BLE001
                latency_ms = int((time.time() - start) * 1000)
                with self._lock:
                    self._on_failure(endpoint, latency_ms, exc)
                    snapshot = self._snapshot()
                raise LLMEndpointError(operation, endpoint.name, snapshot) from exc
            latency_ms = int((time.time() - start) * 1000)
            with self._lock:
                self._on_success(endpoint, latency_ms)
            return result

    def status_snapshot(self) -> Dict[str, Dict[str, object]]:
        """供监控/日志使用的状态快照。"""
        with self._lock:
            return self._snapshot()

    def endpoint_names(self) -> List[str]:
        return [endpoint.name for endpoint in self._order]
