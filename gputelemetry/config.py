"""Runtime configuration for the collector and the API gateway, read from the environment."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

__all__ = [
    "ConfigError",
    "CollectorConfig",
    "GatewayConfig",
    "load_collector_config",
    "load_gateway_config",
]

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class ConfigError(ValueError):
    """Raised when required configuration is missing."""


@dataclass(frozen=True)
class CollectorConfig:
    """Settings for the telemetry collector."""

    mq_address: str = "localhost:9090"
    topic: str = "gpu-telemetry"
    consumer_id: str = "collector-0"
    consumer_group: str = "collector-group"
    database_url: str = ""
    metrics_port: int = 9091


@dataclass(frozen=True)
class GatewayConfig:
    """Settings for the API gateway."""

    http_port: int = 8080
    metrics_port: int = 9091
    database_url: str = ""
    max_limit: int = 1000
    default_limit: int = 100


def _env_str(environ: Mapping[str, str], key: str, default: str) -> str:
    return environ.get(key) or default


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "")
    if not raw or not _INTEGER.fullmatch(raw):
        return default
    value = int(raw)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return default
    return value


def _database_url(environ: Mapping[str, str]) -> str:
    url = environ.get("DATABASE_URL", "")
    if not url:
        raise ConfigError("DATABASE_URL is required")
    return url


def load_collector_config(environ: Optional[Mapping[str, str]] = None) -> CollectorConfig:
    """Build a :class:`CollectorConfig` from ``environ`` (default: ``os.environ``)."""
    env = os.environ if environ is None else environ
    return CollectorConfig(
        mq_address=_env_str(env, "MQ_ADDRESS", "localhost:9090"),
        topic=_env_str(env, "MQ_TOPIC", "gpu-telemetry"),
        consumer_id=_env_str(env, "CONSUMER_ID", "collector-0"),
        consumer_group=_env_str(env, "CONSUMER_GROUP", "collector-group"),
        database_url=_database_url(env),
        metrics_port=_env_int(env, "METRICS_PORT", 9091),
    )


def load_gateway_config(environ: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Build a :class:`GatewayConfig` from ``environ`` (default: ``os.environ``)."""
    env = os.environ if environ is None else environ
    return GatewayConfig(
        http_port=_env_int(env, "HTTP_PORT", 8080),
        metrics_port=_env_int(env, "METRICS_PORT", 9091),
        database_url=_database_url(env),
        max_limit=_env_int(env, "API_MAX_LIMIT", 1000),
        default_limit=_env_int(env, "API_DEFAULT_LIMIT", 100),
    )