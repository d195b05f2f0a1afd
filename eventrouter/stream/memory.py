"""In-process change stream driven directly by callers.

Notifications are delivered synchronously on the calling thread, which makes
sequences of add/update/delete fully deterministic.
"""

from __future__ import annotations

import threading

from eventrouter.models.events import EventRecord
from eventrouter.stream.base import ChangeStream


class InMemoryChangeStream(ChangeStream):
    """ChangeStream fed by ``add`` / ``update`` / ``delete`` calls.

    ``add`` and ``update`` both upsert by ``EventRecord.key``: an unknown key
    is delivered as an add, a cached key as an update carrying the previous
    record.

    Args:
        initial: Records replayed as adds when ``start()`` is called, after
                 which the stream reports itself synced.
        auto_sync: When False, ``start()`` replays but does not mark the
                 stream synced; call ``mark_synced()`` explicitly.
    """

    def __init__(self, initial: list[EventRecord] | None = None, auto_sync: bool = True) -> None:
        super().__init__()
        self._initial = list(initial or [])
        self._auto_sync = auto_sync
        self._store: dict[str, EventRecord] = {}
        self._lock = threading.Lock()

    def list(self) -> list[EventRecord]:
        with self._lock:
            return list(self._store.values())

    async def start(self) -> None:
        for record in self._initial:
            self.add(record)
        if self._auto_sync:
            self._mark_synced()

    async def stop(self) -> None:
        return None

    def mark_synced(self) -> None:
        self._mark_synced()

    def add(self, record: EventRecord) -> None:
        self._upsert(record)

    def update(self, record: EventRecord) -> None:
        self._upsert(record)

    def delete(self, record: EventRecord) -> None:
        """Remove *record* from the cache and deliver a delete."""
        with self._lock:
            self._store.pop(record.key, None)
        for handler in self._handlers:
            handler.on_delete(record)

    def _upsert(self, record: EventRecord) -> None:
        with self._lock:
            old = self._store.get(record.key)
            self._store[record.key] = record
        for handler in self._handlers:
            if old is None:
                handler.on_add(record)
            else:
                handler.on_update(old, record)
