"""Sinks for eventrouter.

One sink is active per process, chosen by ``SinkConfig.name``.

Exports:
    Sink         -- Abstract base for all sink implementations.
    BufferedSink -- Base for sinks that deliver from a background task.
    EventData    -- ADDED/UPDATED envelope written by every sink.
    LogSink      -- structlog line per event (``log``, alias ``glog``).
    StdoutSink   -- JSON line per event on stdout.
    FileSink     -- JSON lines appended to a local file.
    HTTPSink     -- Batched newline-delimited JSON POSTs via httpx.
    KafkaSink    -- One message per event via aiokafka.
    NullSink     -- Discards everything.
    build_sink   -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from eventrouter.sinks.base import BufferedSink, EventData, NullSink, Sink
from eventrouter.sinks.file import FileSink
from eventrouter.sinks.http import HTTPSink
from eventrouter.sinks.kafka import KafkaSink
from eventrouter.sinks.log import LogSink
from eventrouter.sinks.stdout import StdoutSink

if TYPE_CHECKING:
    from eventrouter.models.config import SinkConfig

_log = structlog.get_logger(component="sinks")

__all__ = [
    "BufferedSink",
    "EventData",
    "FileSink",
    "HTTPSink",
    "KafkaSink",
    "LogSink",
    "NullSink",
    "Sink",
    "StdoutSink",
    "build_sink",
]


def build_sink(config: SinkConfig) -> Sink:
    """Construct the sink named by ``config.name``.

    Raises:
        ValueError: unknown sink name, or the chosen sink's settings are invalid.
    """
    name = config.name.lower()
    buffering = {
        "buffer_size": config.buffer_size,
        "batch_size": config.batch_size,
        "discard_messages": config.discard_messages,
    }

    sink: Sink
    if name in ("log", "glog"):
        sink = LogSink()
    elif name == "stdout":
        sink = StdoutSink(json_namespace=config.stdout_json_namespace)
    elif name == "null":
        sink = NullSink()
    elif name == "file":
        sink = FileSink(path=config.file_path, fsync=config.file_fsync, **buffering)
    elif name == "http":
        sink = HTTPSink(url=config.http_url, timeout=config.http_timeout, **buffering)
    elif name == "kafka":
        sink = KafkaSink(
            brokers=config.kafka_brokers,
            topic=config.kafka_topic,
            client_id=config.kafka_client_id,
            **buffering,
        )
    else:
        raise ValueError(f"Invalid sink specified: {config.name!r}")

    _log.info("sink selected", sink=sink.sink_name)
    return sink
