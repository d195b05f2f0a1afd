"""Informer over Kubernetes core/v1 Events.

KubernetesEventSource   -- list and watch calls through kubernetes-asyncio.
KubernetesEventInformer -- keeps a local cache of Events in step with the API
                           server and turns list/watch results into
                           add/update/delete notifications.

Relist recovery: an expired resourceVersion (HTTP 410) triggers a fresh list
which is diffed against the cache.  Any other watch failure is retried from
the last seen resourceVersion with exponential back-off.

Handlers run on a pool of single-thread executors.  Each Event key always
maps to the same executor, so notifications for one Event arrive in order
while different Events are handled in parallel.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

import structlog

from eventrouter.models.events import EventRecord
from eventrouter.stream.base import ChangeStream

_log = structlog.get_logger(component="stream.informer")

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 30.0
_WATCH_TIMEOUT_SECONDS = 300
_PARSE_ERRORS = (ValueError, TypeError, AttributeError)


class ResourceVersionExpired(Exception):
    """The watch resourceVersion is too old; the cache must be relisted."""


class EventSource(Protocol):
    """List/watch access to Events."""

    async def list(self) -> tuple[list[EventRecord], str]:
        """Return every current Event and the list's resourceVersion."""
        ...

    def watch(self, resource_version: str) -> AsyncIterator[tuple[str, EventRecord | None, str]]:
        """Yield ``(type, record, resourceVersion)`` from *resource_version* on.

        ``record`` is None for BOOKMARK notifications and for events that
        could not be parsed; the resourceVersion still advances.
        """
        ...

    async def close(self) -> None: ...


class KubernetesEventSource:
    """EventSource backed by a kubernetes-asyncio ``CoreV1Api``.

    Args:
        core_v1:   ``kubernetes_asyncio.client.CoreV1Api`` instance.
        namespace: Restrict to one namespace; "" watches all namespaces.
    """

    def __init__(self, core_v1: Any, namespace: str = "") -> None:
        self._v1 = core_v1
        self._namespace = namespace

    def _list_call(self) -> tuple[Callable[..., Any], dict[str, Any]]:
        if self._namespace:
            return self._v1.list_namespaced_event, {"namespace": self._namespace}
        return self._v1.list_event_for_all_namespaces, {}

    async def list(self) -> tuple[list[EventRecord], str]:
        func, kwargs = self._list_call()
        response = await func(**kwargs)
        serialize = self._v1.api_client.sanitize_for_serialization
        records: list[EventRecord] = []
        for item in response.items:
            try:
                records.append(EventRecord.from_k8s(serialize(item)))
            except _PARSE_ERRORS as exc:
                _log.warning("skipping unparseable event", error=str(exc), error_type=type(exc).__name__)
        return records, str(response.metadata.resource_version or "")

    async def watch(self, resource_version: str) -> AsyncIterator[tuple[str, EventRecord | None, str]]:
        from kubernetes_asyncio import watch  # type: ignore[import-untyped]
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        func, kwargs = self._list_call()
        try:
            async with watch.Watch() as stream:
                async for event in stream.stream(
                    func,
                    resource_version=resource_version,
                    timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                    allow_watch_bookmarks=True,
                    **kwargs,
                ):
                    event_type = str(event.get("type", ""))
                    raw = event.get("raw_object") or {}
                    if event_type == "ERROR":
                        if raw.get("code") == 410:
                            raise ResourceVersionExpired(str(raw.get("message", "")))
                        raise RuntimeError(f"watch error: {raw.get('message', raw)}")
                    version = str((raw.get("metadata") or {}).get("resourceVersion") or resource_version)
                    if event_type == "BOOKMARK":
                        yield event_type, None, version
                        continue
                    try:
                        record = EventRecord.from_k8s(raw)
                    except _PARSE_ERRORS as exc:
                        _log.warning(
                            "skipping unparseable event",
                            type=event_type,
                            resource_version=version,
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                        yield event_type, None, version
                        continue
                    yield event_type, record, version
        except ApiException as exc:
            if exc.status == 410:
                raise ResourceVersionExpired(str(exc.reason)) from exc
            raise

    async def close(self) -> None:
        await self._v1.api_client.close()


class KubernetesEventInformer(ChangeStream):
    """Cache of Events kept current by list + watch, with periodic resync.

    Args:
        source:          List/watch access to Events.
        resync_interval: Seconds between resyncs that re-deliver every cached
                         record as ``on_update(record, record)``; 0 disables.
        workers:         Number of handler threads.
    """

    def __init__(self, source: EventSource, resync_interval: float = 1800.0, workers: int = 4) -> None:
        super().__init__()
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._source = source
        self._resync_interval = resync_interval
        self._store: dict[str, EventRecord] = {}
        self._store_lock = threading.Lock()
        self._resource_version = ""
        self._executors = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"eventrouter-worker-{i}") for i in range(workers)
        ]
        self._tasks: list[asyncio.Task[None]] = []

    def list(self) -> list[EventRecord]:
        with self._store_lock:
            return list(self._store.values())

    async def start(self) -> None:
        self._tasks.append(asyncio.create_task(self._run(), name="event-informer"))
        if self._resync_interval > 0:
            self._tasks.append(asyncio.create_task(self._resync_loop(), name="event-informer-resync"))
        _log.info("event informer started", workers=len(self._executors), resync_interval=self._resync_interval)

    async def stop(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        for executor in self._executors:
            executor.shutdown(wait=False, cancel_futures=True)
        await self._source.close()
        _log.info("event informer stopped")

    # ------------------------------------------------------------------
    # List / watch loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                if not self._resource_version:
                    self._resource_version = await self._relist()
                await self._watch()
                backoff = _INITIAL_BACKOFF
            except ResourceVersionExpired as exc:
                _log.info("watch resource version expired; relisting", reason=str(exc))
                self._resource_version = ""
            except Exception as exc:
                _log.warning("event watch failed", error=str(exc), retry_in=backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)

    async def _relist(self) -> str:
        """List every Event and reconcile the cache against the result."""
        records, resource_version = await self._source.list()
        fresh = {record.key: record for record in records}
        with self._store_lock:
            previous = self._store
            self._store = dict(fresh)

        for key, old in previous.items():
            if key not in fresh:
                self._dispatch_delete(old)
        for key, record in fresh.items():
            self._dispatch_upsert(previous.get(key), record)

        self._mark_synced()
        _log.info("event list merged", events=len(fresh), resource_version=resource_version)
        return resource_version

    async def _watch(self) -> None:
        """Apply watch notifications, remembering the last resourceVersion seen."""
        async for event_type, record, version in self._source.watch(self._resource_version):
            self._resource_version = version
            if record is not None:
                self._apply(event_type, record)

    def _apply(self, event_type: str, record: EventRecord) -> None:
        if event_type in ("ADDED", "MODIFIED"):
            with self._store_lock:
                old = self._store.get(record.key)
                self._store[record.key] = record
            self._dispatch_upsert(old, record)
        elif event_type == "DELETED":
            with self._store_lock:
                self._store.pop(record.key, None)
            self._dispatch_delete(record)
        else:
            _log.debug("ignoring watch notification", type=event_type, event_key=record.key)

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._resync_interval)
            if not self.has_synced():
                continue
            records = self.list()
            for record in records:
                self._dispatch_upsert(record, record)
            _log.debug("event cache resynced", events=len(records))

    # ------------------------------------------------------------------
    # Handler dispatch
    # ------------------------------------------------------------------

    def _dispatch_upsert(self, old: EventRecord | None, new: EventRecord) -> None:
        for handler in self._handlers:
            if old is None:
                self._submit(new.key, handler.on_add, new)
            else:
                self._submit(new.key, handler.on_update, old, new)

    def _dispatch_delete(self, record: EventRecord) -> None:
        for handler in self._handlers:
            self._submit(record.key, handler.on_delete, record)

    def _submit(self, key: str, callback: Callable[..., None], *args: EventRecord) -> None:
        executor = self._executors[hash(key) % len(self._executors)]
        executor.submit(_invoke, callback, *args)


def _invoke(callback: Callable[..., None], *args: EventRecord) -> None:
    """Run one handler callback on a worker thread, never letting it raise."""
    try:
        callback(*args)
    except Exception as exc:  # noqa: BLE001
        _log.error(
            "event handler raised",
            callback=getattr(callback, "__name__", repr(callback)),
            error=str(exc),
            error_type=type(exc).__name__,
        )
