"""Sink contract and shared plumbing.

Sink         -- ABC every backend implements; ``publish`` must never block or raise.
EventData    -- Envelope written by every backend (verb + event + old event).
BufferedSink -- Base for backends doing slow I/O: ``publish`` hands the
                envelope to an asyncio queue that a background task drains
                in batches.
"""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from eventrouter.models.events import EventRecord

_log = structlog.get_logger(component="sinks")

_STOP_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class EventData:
    """What a sink records for one routed event."""

    verb: str
    event: EventRecord
    old_event: EventRecord | None = None

    @classmethod
    def build(cls, new: EventRecord, old: EventRecord | None) -> EventData:
        return cls(verb="ADDED" if old is None else "UPDATED", event=new, old_event=old)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"verb": self.verb, "event": self.event.to_dict()}
        if self.old_event is not None:
            payload["old_event"] = self.old_event.to_dict()
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, separators=(",", ":"))


class Sink(ABC):
    """Destination for routed events.

    ``publish`` is called from the stream's worker threads and must return
    promptly; delivery failures are logged by the sink itself.
    """

    @property
    @abstractmethod
    def sink_name(self) -> str:
        """Identifier used in logs."""

    @abstractmethod
    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        """Record *new*; *old* is the previous version on update, None on add."""

    async def start(self) -> None:
        """Acquire resources; called once before the first ``publish``."""
        return None

    async def stop(self) -> None:
        """Flush and release resources."""
        return None


class NullSink(Sink):
    """Discards everything."""

    @property
    def sink_name(self) -> str:
        return "null"

    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        return None


class BufferedSink(Sink):
    """Sink whose deliveries happen on a background asyncio task.

    ``publish`` may be called from any thread.  It schedules the envelope
    onto the event loop captured by ``start()`` and returns immediately.

    Args:
        buffer_size: Queue capacity.
        batch_size:  Maximum envelopes handed to one ``_deliver`` call.
        discard_messages: When the queue is full, True drops the incoming
                     envelope, False evicts the oldest queued one.
    """

    def __init__(self, buffer_size: int = 1500, batch_size: int = 100, discard_messages: bool = True) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._buffer_size = buffer_size
        self._batch_size = batch_size
        self._discard_messages = discard_messages
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[EventData] | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        """Envelopes lost because the sink was stopped or its buffer was full."""
        with self._dropped_lock:
            return self._dropped

    def _count_drop(self) -> None:
        with self._dropped_lock:
            self._dropped += 1

    @abstractmethod
    async def _open(self) -> None:
        """Open the backend connection or file."""

    @abstractmethod
    async def _deliver(self, batch: list[EventData]) -> None:
        """Write *batch* to the backend.  Exceptions are logged by the caller."""

    @abstractmethod
    async def _close(self) -> None:
        """Close the backend connection or file."""

    async def start(self) -> None:
        await self._open()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._buffer_size)
        self._drain_task = asyncio.create_task(self._drain(), name=f"sink-{self.sink_name}")
        _log.info("sink started", sink=self.sink_name, buffer_size=self._buffer_size)

    async def stop(self) -> None:
        queue = self._queue
        task = self._drain_task
        self._loop = None
        if queue is not None and task is not None:
            try:
                await asyncio.wait_for(queue.join(), timeout=_STOP_GRACE_SECONDS)
            except TimeoutError:
                _log.warning("sink flush timed out", sink=self.sink_name, pending=queue.qsize())
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._drain_task = None
        self._queue = None
        await self._close()
        _log.info("sink stopped", sink=self.sink_name, dropped=self.dropped)

    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._count_drop()
            _log.warning("sink not running; event dropped", sink=self.sink_name, event_key=new.key)
            return
        data = EventData.build(new, old)
        try:
            loop.call_soon_threadsafe(self._enqueue, data)
        except RuntimeError:
            # loop closed between the check and the call
            self._count_drop()

    def _enqueue(self, data: EventData) -> None:
        queue = self._queue
        if queue is None:
            self._count_drop()
            return
        if queue.full():
            self._count_drop()
            if self._discard_messages:
                _log.warning("sink buffer full; event discarded", sink=self.sink_name, event_key=data.event.key)
                return
            evicted = queue.get_nowait()
            queue.task_done()
            _log.warning("sink buffer full; oldest event evicted", sink=self.sink_name, event_key=evicted.event.key)
        queue.put_nowait(data)

    async def _drain(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            batch = [await queue.get()]
            while len(batch) < self._batch_size and not queue.empty():
                batch.append(queue.get_nowait())
            try:
                await self._deliver(batch)
            except Exception as exc:  # noqa: BLE001
                _log.warning(
                    "sink delivery failed",
                    sink=self.sink_name,
                    events=len(batch),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            finally:
                for _ in batch:
                    queue.task_done()
