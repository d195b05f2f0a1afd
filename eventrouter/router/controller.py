"""EventRouter: counts Events and forwards them to a sink.

The router registers itself as the handler of a ChangeStream, waits for the
stream's initial synchronization, and then stays idle while the stream
calls ``on_add`` / ``on_update`` / ``on_delete`` from its worker threads.

Counters are cumulative occurrence counts: both add and update increment
the entry for the *current* record, and delete removes the entry for the
record being deleted.  If an update changes any labelled field the entry
for the previous labels is left behind until a delete with those labels.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from enum import StrEnum
from typing import Any, TypeVar

import structlog

from eventrouter.models.events import EventRecord
from eventrouter.observability.metrics import MetricRegistry
from eventrouter.router.classifier import classify
from eventrouter.sinks.base import Sink
from eventrouter.stream.base import ChangeStream

_log = structlog.get_logger(component="router.controller")

_F = TypeVar("_F", bound=Callable[..., None])


class ControllerState(StrEnum):
    """Lifecycle of an EventRouter."""

    CREATED = "created"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


def _handle_crash(handler: _F) -> _F:
    """Log and swallow any exception raised while handling one notification."""

    @functools.wraps(handler)
    def wrapper(self: EventRouter, *args: Any) -> None:
        try:
            handler(self, *args)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "event_handler_crashed",
                handler=handler.__name__,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )

    return wrapper  # type: ignore[return-value]


class EventRouter:
    """Routes Event notifications from a ChangeStream to metrics and a Sink.

    Args:
        stream:  Source of add/update/delete notifications.
        sink:    Destination for added and updated events.
        metrics: Counter registry; pass a disabled registry to skip counting.
    """

    def __init__(self, stream: ChangeStream, sink: Sink, metrics: MetricRegistry) -> None:
        self._stream = stream
        self._sink = sink
        self._metrics = metrics
        self._state = ControllerState.CREATED
        stream.add_handler(self)

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def sink(self) -> Sink:
        return self._sink

    async def run(self, stop: asyncio.Event) -> bool:
        """Wait for the stream to sync, then idle until *stop* is set.

        Returns False without entering RUNNING when *stop* fires before the
        initial synchronization completes, True after a normal shutdown.
        """
        _log.info("starting eventrouter", sink=self._sink.sink_name, metrics=self._metrics.enabled)
        try:
            if not await self._stream.wait_for_initial_sync(stop):
                _log.error("timed out waiting for caches to sync")
                return False
            self._state = ControllerState.RUNNING
            _log.info("eventrouter running", cached_events=len(self._stream.list()))
            await stop.wait()
            return True
        finally:
            self._state = ControllerState.SHUTTING_DOWN
            _log.info("shutting down eventrouter")

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------

    @_handle_crash
    def on_add(self, record: EventRecord) -> None:
        """Called for a newly observed event, including the initial listing."""
        self._count(record)
        self._sink.publish(record, None)

    @_handle_crash
    def on_update(self, old: EventRecord, new: EventRecord) -> None:
        """Called whenever an already observed event changes."""
        self._count(new)
        self._sink.publish(new, old)

    @_handle_crash
    def on_delete(self, record: EventRecord) -> None:
        """Called when the API server garbage-collects an event after its TTL.

        Deletions are not forwarded to the sink.
        """
        labels, severity = classify(record)
        removed = self._metrics.try_remove(severity, labels)
        _log.debug(
            "event deleted from the system",
            event_key=record.key,
            severity=severity.value,
            counter_removed=removed,
        )

    def _count(self, record: EventRecord) -> None:
        labels, severity = classify(record)
        self._metrics.increment(severity, labels)
