"""Sink that emits each routed event as a structured log line."""

from __future__ import annotations

import structlog

from eventrouter.models.events import EventRecord
from eventrouter.sinks.base import EventData, Sink

_log = structlog.get_logger(component="sinks.log")


class LogSink(Sink):
    """Writes one ``info`` log entry per event through structlog."""

    @property
    def sink_name(self) -> str:
        return "log"

    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        data = EventData.build(new, old)
        _log.info(
            "event",
            verb=data.verb,
            kind=new.kind,
            name=new.name,
            namespace=new.namespace,
            reason=new.reason,
            type=new.severity,
            message=new.message,
            source=new.source_host,
            count=new.count,
            event_name=new.event_name,
            old_count=old.count if old is not None else None,
        )
