"""LLM 端点管理与 OpenAI 兼容客户端封装。"""

from __future__ import annotations

from .endpoint_manager import (  # noqa: F401
    LLMEndpointConfig,
    LLMEndpointError,
    LLMEndpointManager,
)
