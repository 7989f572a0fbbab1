# Copyright 2025 msq
"""
统一日志模块

提供全局structlog配置，包括：
- 统一processor链（时间戳、堆栈、trace-id注入）
- JSON/控制台双渲染模式
- Prometheus指标集中注册（日志计数、推荐来源、排序耗时、灾害匹配数）
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from prometheus_client import Counter, Histogram

# ========== ContextVar：跨异步边界的trace-id传递 ==========
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)


# ========== Prometheus指标集中注册 ==========
log_count_metric = Counter(
    "shelter_log_total",
    "日志总数（按级别和模块分类）",
    ["level", "module"],
)

# 推荐结果来源：ai 表示外部排序成功，fallback 表示确定性评分兜底
recommendation_source_metric = Counter(
    "shelter_recommendation_total",
    "避难所推荐次数（按来源与灾种分类）",
    ["source", "disaster_type"],
)

ranking_latency_metric = Histogram(
    "shelter_ranking_latency_seconds",
    "外部排序调用耗时（秒）",
    ["outcome"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 30.0),
)

hazard_match_metric = Counter(
    "shelter_nearby_hazard_total",
    "匹配到的附近灾害数量（按类别）",
    ["category"],
)


# ========== 自定义Processor ==========
def add_trace_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    从ContextVar中提取trace-id并注入到日志上下文

    用法：
        from emergency_shelter.logging import set_trace_id
        set_trace_id("req-12345")
        logger.info("processing_request")  # 自动包含trace_id字段
    """
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id
    return event_dict


def add_prometheus_metrics(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """日志事件计数到Prometheus，用于监控告警日志激增。"""
    level = event_dict.get("level", "info")
    module = event_dict.get("logger", "unknown")
    log_count_metric.labels(level=level, module=module).inc()
    return event_dict


# ========== 全局配置函数 ==========
def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    配置全局structlog

    Args:
        json_logs: 是否输出JSON格式（生产环境推荐True）
        log_level: 日志级别（DEBUG/INFO/WARNING/ERROR）

    使用方式：
        from emergency_shelter.logging import configure_logging
        configure_logging(json_logs=True, log_level="INFO")

        import structlog
        logger = structlog.get_logger(__name__)
        logger.info("hello", shelter_id="sf_school_1")
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_trace_id,
        add_prometheus_metrics,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ========== 便捷函数：trace-id管理 ==========
def set_trace_id(trace_id: str) -> None:
    """设置当前协程的trace-id。"""
    trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    """清除当前协程的trace-id（防止上下文泄漏）"""
    trace_id_var.set(None)


def get_trace_id() -> str | None:
    return trace_id_var.get()


# 在模块导入时自动配置（开发环境使用控制台渲染）
# 生产环境应在应用启动时显式调用 configure_logging(json_logs=True)
configure_logging(json_logs=False, log_level="INFO")
