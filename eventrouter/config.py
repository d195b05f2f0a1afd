"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from eventrouter.models.config import (
    APIConfig,
    EventRouterConfig,
    LogConfig,
    MetricsConfig,
    SinkConfig,
    StreamConfig,
)

SINK_NAMES = frozenset({"log", "glog", "stdout", "file", "http", "kafka", "null"})


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"EVENTROUTER_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _validate_sink(value: str) -> str:
    name = value.strip().lower()
    if name not in SINK_NAMES:
        raise ValueError(f"Invalid sink: {value}. Must be one of {sorted(SINK_NAMES)}")
    return name


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> EventRouterConfig:
    """Load configuration from EVENTROUTER_* environment variables."""
    return EventRouterConfig(
        metrics=MetricsConfig(
            enabled=_env_bool("ENABLE_PROMETHEUS", True),
        ),
        stream=StreamConfig(
            namespace=_env("NAMESPACE", ""),
            resync_interval=_env_int("RESYNC_INTERVAL", 1800, min_val=0, max_val=86400),
            workers=_env_int("WORKERS", 4, min_val=1, max_val=64),
        ),
        sink=SinkConfig(
            name=_validate_sink(_env("SINK", "log")),
            stdout_json_namespace=_env("STDOUT_JSON_NAMESPACE", ""),
            file_path=_env("FILE_PATH", "/var/log/eventrouter/events.jsonl"),
            file_fsync=_env_bool("FILE_FSYNC", False),
            http_url=_env("HTTP_URL", ""),
            http_timeout=_env_float("HTTP_TIMEOUT", 10.0),
            kafka_brokers=_env("KAFKA_BROKERS", "localhost:9092"),
            kafka_topic=_env("KAFKA_TOPIC", "eventrouter"),
            kafka_client_id=_env("KAFKA_CLIENT_ID", "eventrouter"),
            buffer_size=_env_int("SINK_BUFFER_SIZE", 1500, min_val=1, max_val=1_000_000),
            batch_size=_env_int("SINK_BATCH_SIZE", 100, min_val=1, max_val=10_000),
            discard_messages=_env_bool("SINK_DISCARD_MESSAGES", True),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
