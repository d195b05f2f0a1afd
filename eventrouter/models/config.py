"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class MetricsConfig:
    """Prometheus counter configuration."""

    enabled: bool = True


@dataclass
class StreamConfig:
    """Event informer configuration."""

    namespace: str = ""
    resync_interval: int = 1800
    workers: int = 4


@dataclass
class SinkConfig:
    """Sink selection plus the backend-specific settings of every variant."""

    name: str = "log"
    stdout_json_namespace: str = ""
    file_path: str = "/var/log/eventrouter/events.jsonl"
    file_fsync: bool = False
    http_url: str = ""
    http_timeout: float = 10.0
    kafka_brokers: str = "localhost:9092"
    kafka_topic: str = "eventrouter"
    kafka_client_id: str = "eventrouter"
    buffer_size: int = 1500
    batch_size: int = 100
    discard_messages: bool = True


@dataclass
class APIConfig:
    """Health and metrics HTTP server configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class EventRouterConfig:
    """Top-level eventrouter configuration."""

    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
