"""Change stream contract consumed by the EventRouter.

EventHandler -- the three callbacks a stream delivers notifications to.
ChangeStream -- ABC for anything that can feed Event add/update/delete
                notifications and report initial synchronization.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Protocol

import structlog

from eventrouter.models.events import EventRecord

_log = structlog.get_logger(component="stream")


class EventHandler(Protocol):
    """Receiver of change notifications.

    Streams may call these from several threads at once; implementations
    must be thread-safe.
    """

    def on_add(self, record: EventRecord) -> None: ...

    def on_update(self, old: EventRecord, new: EventRecord) -> None: ...

    def on_delete(self, record: EventRecord) -> None: ...


class ChangeStream(ABC):
    """A local cache of Events plus notifications about its changes."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._synced = asyncio.Event()

    def add_handler(self, handler: EventHandler) -> None:
        """Register *handler*; it receives every notification from now on."""
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        """True once the initial listing has been merged into the cache."""
        return self._synced.is_set()

    async def wait_for_initial_sync(self, cancel: asyncio.Event) -> bool:
        """Block until the stream has synced or *cancel* is set.

        Returns True if synchronization completed, False if *cancel* fired first.
        """
        if self._synced.is_set():
            return True
        synced = asyncio.ensure_future(self._synced.wait())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({synced, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            synced.cancel()
            cancelled.cancel()
        return self._synced.is_set()

    def _mark_synced(self) -> None:
        if not self._synced.is_set():
            _log.info("change stream synced", stream=type(self).__name__)
        self._synced.set()

    @abstractmethod
    def list(self) -> list[EventRecord]:
        """Snapshot of the records currently held in the local cache."""

    @abstractmethod
    async def start(self) -> None:
        """Begin delivering notifications."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering notifications and release resources."""
