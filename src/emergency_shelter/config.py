# Copyright 2025 msq
from __future__ import annotations

import json
import os
from dataclasses import dataclass

import structlog

from emergency_shelter.llm.endpoint_manager import LLMEndpointConfig

_logger = structlog.get_logger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_LLM_MODEL = "gpt-4o-mini"

try:
    # 说明：统一从 APP_ENV 选择性加载环境文件；默认回退到 dev.env
    from dotenv import load_dotenv

    base_dir: str = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
    config_dir: str = os.path.join(base_dir, "config")

    env_name: str = (os.getenv("APP_ENV") or "").strip().lower()
    if env_name:
        env_file: str = os.path.join(config_dir, f"env.{env_name}")
    else:
        env_file = os.path.join(config_dir, "dev.env")

    # 不覆盖进程中已有的环境变量
    load_dotenv(env_file, override=False)
    # 开发者本地覆盖层（可选，不存在时忽略）
    load_dotenv(os.path.join(config_dir, "dev.local.env"), override=False)
except Exception as exc:
    # dotenv 加载失败不影响运行（保持现有环境变量）
    _logger.warning("dotenv_load_skipped", error=str(exc))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _logger.warning("config_value_invalid", name=name, raw=raw, default=default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        _logger.warning("config_value_invalid", name=name, raw=raw, default=default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class AppConfig:
    openai_base_url: str
    openai_api_key: str
    llm_model: str
    llm_endpoints: tuple[LLMEndpointConfig, ...]
    llm_failure_threshold: int
    llm_recovery_seconds: int
    llm_max_concurrency: int
    ranking_timeout_seconds: float
    ranking_candidate_limit: int
    ranking_temperature: float
    ranking_max_tokens: int
    hazard_radius_km: float
    hazard_cache_ttl_seconds: float
    nearby_shelter_radius_km: float
    scorer_distance_cap: str
    log_json: bool
    log_level: str

    @staticmethod
    def load_from_env() -> "AppConfig":
        openai_base_url = os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL)
        openai_api_key = os.getenv("OPENAI_API_KEY", "dummy")

        endpoints: list[LLMEndpointConfig] = []
        endpoints_env = os.getenv("LLM_ENDPOINTS")
        if endpoints_env:
            try:
                for idx, raw in enumerate(json.loads(endpoints_env)):
                    if not isinstance(raw, dict):
                        continue
                    base_url = str(raw.get("base_url") or "")
                    if not base_url:
                        continue
                    endpoints.append(
                        LLMEndpointConfig(
                            name=str(raw.get("name") or f"endpoint-{idx}"),
                            base_url=base_url,
                            api_key=str(raw.get("api_key") or openai_api_key),
                            priority=int(raw.get("priority", 100)),
                        )
                    )
            except (ValueError, TypeError) as exc:
                _logger.warning("llm_endpoints_parse_failed", error=str(exc))
                endpoints = []

        backup_url = os.getenv("OPENAI_BACKUP_URL")
        if backup_url:
            endpoints.append(
                LLMEndpointConfig(
                    name=os.getenv("OPENAI_BACKUP_NAME", "backup"),
                    base_url=backup_url,
                    api_key=os.getenv("OPENAI_BACKUP_KEY", openai_api_key),
                    priority=_env_int("OPENAI_BACKUP_PRIORITY", 80),
                )
            )

        if not endpoints:
            endpoints.append(
                LLMEndpointConfig(
                    name="primary",
                    base_url=openai_base_url,
                    api_key=openai_api_key,
                    priority=100,
                )
            )

        scorer_distance_cap = os.getenv("SCORER_DISTANCE_CAP", "wide").strip().lower()
        if scorer_distance_cap not in {"wide", "narrow"}:
            _logger.warning("config_value_invalid", name="SCORER_DISTANCE_CAP", raw=scorer_distance_cap, default="wide")
            scorer_distance_cap = "wide"

        return AppConfig(
            openai_base_url=openai_base_url,
            openai_api_key=openai_api_key,
            llm_model=os.getenv("LLM_MODEL", DEFAULT_LLM_MODEL),
            llm_endpoints=tuple(endpoints),
            llm_failure_threshold=_env_int("LLM_FAILURE_THRESHOLD", 3),
            llm_recovery_seconds=_env_int("LLM_RECOVERY_SECONDS", 60),
            llm_max_concurrency=_env_int("LLM_MAX_CONCURRENCY", 5),
            ranking_timeout_seconds=_env_float("RANKING_TIMEOUT_SECONDS", 12.0),
            ranking_candidate_limit=_env_int("RANKING_CANDIDATE_LIMIT", 10),
            ranking_temperature=_env_float("RANKING_TEMPERATURE", 0.2),
            ranking_max_tokens=_env_int("RANKING_MAX_TOKENS", 1000),
            hazard_radius_km=_env_float("HAZARD_RADIUS_KM", 50.0),
            hazard_cache_ttl_seconds=_env_float("HAZARD_CACHE_TTL_SECONDS", 300.0),
            nearby_shelter_radius_km=_env_float("NEARBY_SHELTER_RADIUS_KM", 25.0),
            scorer_distance_cap=scorer_distance_cap,
            log_json=_env_bool("LOG_JSON", False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
