# Copyright 2025 msq
from __future__ import annotations

from typing import Any, Optional, Protocol

from openai import AsyncOpenAI

from emergency_shelter.config import AppConfig
from emergency_shelter.llm.endpoint_manager import LLMEndpointConfig, LLMEndpointManager


class _AsyncChatCompletionsProtocol(Protocol):
    async def create(self, *args: Any, **kwargs: Any) -> Any: ...


class _AsyncChatNamespace(Protocol):
    completions: _AsyncChatCompletionsProtocol


class AsyncLLMClientProtocol(Protocol):
    chat: _AsyncChatNamespace


class _AsyncFailoverChatCompletions:
    """异步聊天完成封装：每次请求由端点管理器挑选端点并执行。"""

    def __init__(self, manager: LLMEndpointManager) -> None:
        self._manager = manager

    async def create(self, *args: Any, **kwargs: Any) -> Any:
        async def caller(client: AsyncOpenAI, endpoint: LLMEndpointConfig) -> Any:
            return await client.chat.completions.create(*args, **kwargs)

        return await self._manager.call_async("chat_completion", caller)


class _AsyncFailoverChat:
    def __init__(self, manager: LLMEndpointManager) -> None:
        self.completions = _AsyncFailoverChatCompletions(manager)


class FailoverAsyncLLMClient:
    """异步LLM客户端封装，外部接口与OpenAI兼容。"""

    def __init__(self, manager: LLMEndpointManager) -> None:
        self.manager = manager
        self.chat = _AsyncFailoverChat(manager)


def get_async_openai_client(config: Optional[AppConfig] = None) -> FailoverAsyncLLMClient:
    cfg = config or AppConfig.load_from_env()
    return FailoverAsyncLLMClient(LLMEndpointManager.from_config(cfg))
