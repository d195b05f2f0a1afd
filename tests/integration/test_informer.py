"""Integration tests for KubernetesEventInformer.

A scripted EventSource stands in for the API server so list, watch, relist
and resync behaviour can be exercised without a cluster.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import kubernetes_asyncio.watch as k8s_watch
import pytest
from structlog.testing import capture_logs

from eventrouter.models.events import EventRecord
from eventrouter.stream import informer as informer_module
from eventrouter.stream.informer import KubernetesEventInformer, KubernetesEventSource, ResourceVersionExpired

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

WatchItem = tuple[str, EventRecord | None, str] | Exception


class _ScriptedSource:
    """EventSource replaying canned list results and watch scripts.

    Once the watch scripts run out, ``watch`` blocks until cancelled.
    """

    def __init__(self, lists: list[tuple[list[EventRecord], str]], watches: list[list[WatchItem]]) -> None:
        self._lists = list(lists)
        self._watches = list(watches)
        self.list_calls = 0
        self.watch_versions: list[str] = []
        self.closed = False

    async def list(self) -> tuple[list[EventRecord], str]:
        self.list_calls += 1
        if len(self._lists) > 1:
            return self._lists.pop(0)
        return self._lists[0]

    async def watch(self, resource_version: str) -> AsyncIterator[tuple[str, EventRecord | None, str]]:
        self.watch_versions.append(resource_version)
        if not self._watches:
            await asyncio.Event().wait()
        for item in self._watches.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Initial list
# ---------------------------------------------------------------------------


class TestInitialList:
    async def test_initial_list_is_replayed_as_adds(self, event_factory, recording_handler) -> None:
        records = [event_factory(event_name=f"e{i}") for i in range(3)]
        source = _ScriptedSource(lists=[(records, "10")], watches=[])
        informer = KubernetesEventInformer(source, resync_interval=0, workers=2)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            assert await asyncio.wait_for(informer.wait_for_initial_sync(asyncio.Event()), timeout=2.0)
            await _wait_for(lambda: len(recording_handler.calls) == 3)
            assert sorted(call[1] for call in recording_handler.calls) == ["default/e0", "default/e1", "default/e2"]
            assert all(call[0] == "add" for call in recording_handler.calls)
            assert len(informer.list()) == 3
            await _wait_for(lambda: source.watch_versions == ["10"])
        finally:
            await informer.stop()
        assert source.closed

    async def test_not_synced_before_list(self, recording_handler) -> None:
        informer = KubernetesEventInformer(_ScriptedSource(lists=[([], "1")], watches=[]), resync_interval=0)
        assert informer.has_synced() is False
        cancel = asyncio.Event()
        cancel.set()
        assert await informer.wait_for_initial_sync(cancel) is False


# ---------------------------------------------------------------------------
# Watch
# ---------------------------------------------------------------------------


class TestWatch:
    async def test_watch_notifications_become_callbacks(self, event_factory, recording_handler) -> None:
        base = event_factory(event_name="e1", resource_version="10")
        modified = event_factory(event_name="e1", count=2, resource_version="11")
        added = event_factory(event_name="e2", resource_version="12")
        source = _ScriptedSource(
            lists=[([base], "10")],
            watches=[
                [
                    ("MODIFIED", modified, "11"),
                    ("ADDED", added, "12"),
                    ("BOOKMARK", None, "13"),
                    ("DELETED", added, "14"),
                ]
            ],
        )
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 4)
            assert recording_handler.calls == [
                ("add", "default/e1", "10"),
                ("update", "default/e1", "10", "11"),
                ("add", "default/e2", "12"),
                ("delete", "default/e2"),
            ]
            assert [r.key for r in informer.list()] == ["default/e1"]
            await _wait_for(lambda: source.watch_versions == ["10", "14"])
        finally:
            await informer.stop()

    async def test_added_for_cached_key_is_update(self, event_factory, recording_handler) -> None:
        base = event_factory(event_name="e1", resource_version="10")
        again = event_factory(event_name="e1", resource_version="11")
        source = _ScriptedSource(lists=[([base], "10")], watches=[[("ADDED", again, "11")]])
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 2)
            assert recording_handler.calls[1] == ("update", "default/e1", "10", "11")
        finally:
            await informer.stop()

    async def test_same_key_is_delivered_in_order(self, event_factory, recording_handler) -> None:
        updates = [("MODIFIED", event_factory(event_name="e1", resource_version=str(v)), str(v)) for v in range(11, 61)]
        source = _ScriptedSource(
            lists=[([event_factory(event_name="e1", resource_version="10")], "10")],
            watches=[updates],
        )
        informer = KubernetesEventInformer(source, resync_interval=0, workers=8)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 51)
            versions = [call[3] for call in recording_handler.calls[1:]]
            assert versions == [str(v) for v in range(11, 61)]
        finally:
            await informer.stop()


# ---------------------------------------------------------------------------
# Relist and retry
# ---------------------------------------------------------------------------


class TestRelist:
    async def test_expired_watch_relists_and_diffs(self, event_factory, recording_handler) -> None:
        kept_v1 = event_factory(event_name="kept", resource_version="10")
        gone = event_factory(event_name="gone", resource_version="10")
        kept_v2 = event_factory(event_name="kept", count=2, resource_version="20")
        fresh = event_factory(event_name="fresh", resource_version="21")
        source = _ScriptedSource(
            lists=[([kept_v1, gone], "10"), ([kept_v2, fresh], "21")],
            watches=[[ResourceVersionExpired("too old")]],
        )
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 5)
            assert recording_handler.calls[2:] == [
                ("delete", "default/gone"),
                ("update", "default/kept", "10", "20"),
                ("add", "default/fresh", "21"),
            ]
            assert source.list_calls == 2
            assert sorted(r.key for r in informer.list()) == ["default/fresh", "default/kept"]
        finally:
            await informer.stop()

    async def test_watch_failure_retries_from_last_version(
        self, monkeypatch: pytest.MonkeyPatch, event_factory, recording_handler
    ) -> None:
        monkeypatch.setattr(informer_module, "_INITIAL_BACKOFF", 0.01)
        added = event_factory(event_name="e2", resource_version="11")
        source = _ScriptedSource(
            lists=[([], "10")],
            watches=[[("ADDED", added, "11"), ConnectionError("stream reset")]],
        )
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(source.watch_versions) == 2)
            assert source.list_calls == 1
            assert source.watch_versions[1] == "11"
        finally:
            await informer.stop()

    async def test_list_failure_is_retried(self, monkeypatch: pytest.MonkeyPatch, event_factory) -> None:
        monkeypatch.setattr(informer_module, "_INITIAL_BACKOFF", 0.01)

        class _FlakyList(_ScriptedSource):
            async def list(self) -> tuple[list[EventRecord], str]:
                if self.list_calls == 0:
                    self.list_calls += 1
                    raise ConnectionError("apiserver unavailable")
                return await super().list()

        source = _FlakyList(lists=[([event_factory()], "10")], watches=[])
        informer = KubernetesEventInformer(source, resync_interval=0)

        await informer.start()
        try:
            assert await asyncio.wait_for(informer.wait_for_initial_sync(asyncio.Event()), timeout=2.0)
            assert source.list_calls == 2
        finally:
            await informer.stop()


# ---------------------------------------------------------------------------
# Resync and worker isolation
# ---------------------------------------------------------------------------


class TestResync:
    async def test_resync_redelivers_cached_records(self, event_factory, recording_handler) -> None:
        source = _ScriptedSource(lists=[([event_factory(event_name="e1", resource_version="10")], "10")], watches=[])
        informer = KubernetesEventInformer(source, resync_interval=0.05, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) >= 3)
            assert recording_handler.calls[1] == ("update", "default/e1", "10", "10")
        finally:
            await informer.stop()


class TestWorkers:
    async def test_raising_handler_does_not_stop_worker(self, event_factory, recording_handler) -> None:
        class _Raising:
            def on_add(self, record: EventRecord) -> None:
                raise RuntimeError("boom")

            def on_update(self, old: EventRecord, new: EventRecord) -> None:
                raise RuntimeError("boom")

            def on_delete(self, record: EventRecord) -> None:
                raise RuntimeError("boom")

        records = [event_factory(event_name=f"e{i}") for i in range(5)]
        informer = KubernetesEventInformer(_ScriptedSource(lists=[(records, "1")], watches=[]), resync_interval=0)
        informer.add_handler(_Raising())
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 5)
        finally:
            await informer.stop()

    async def test_handlers_run_off_the_event_loop_thread(self, event_factory, recording_handler) -> None:
        records = [event_factory(event_name=f"e{i}") for i in range(20)]
        informer = KubernetesEventInformer(_ScriptedSource(lists=[(records, "1")], watches=[]), resync_interval=0)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: len(recording_handler.calls) == 20)
            assert all(name.startswith("eventrouter-worker-") for name in recording_handler.threads)
        finally:
            await informer.stop()

    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(ValueError):
            KubernetesEventInformer(_ScriptedSource(lists=[([], "1")], watches=[]), workers=0)


# ---------------------------------------------------------------------------
# Unparseable events from the API server
# ---------------------------------------------------------------------------


class _FakeCoreV1:
    """Just enough of ``CoreV1Api`` for ``KubernetesEventSource``."""

    def __init__(self, items: list[dict[str, Any]], resource_version: str) -> None:
        self._items = items
        self._resource_version = resource_version
        self.api_client = SimpleNamespace(sanitize_for_serialization=lambda item: item, close=AsyncMock())

    async def list_event_for_all_namespaces(self, **kwargs: Any) -> SimpleNamespace:
        return SimpleNamespace(
            items=list(self._items),
            metadata=SimpleNamespace(resource_version=self._resource_version),
        )


def _fake_watch(scripts: list[list[dict[str, Any]]]) -> type:
    """Watch replacement streaming *scripts* in turn, then idling."""

    class _Watch:
        async def __aenter__(self) -> _Watch:
            return self

        async def __aexit__(self, *exc_info: object) -> None:
            return None

        async def stream(self, func: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            if not scripts:
                await asyncio.Event().wait()
            for raw in scripts.pop(0):
                yield {"type": "ADDED", "raw_object": raw}

    return _Watch


class TestUnparseableEvents:
    async def test_bad_watch_event_does_not_block_later_events(
        self, monkeypatch: pytest.MonkeyPatch, k8s_event_factory, recording_handler
    ) -> None:
        bad = k8s_event_factory(event_name="bad", resource_version="2")
        bad["lastTimestamp"] = "not-a-time"
        good = k8s_event_factory(event_name="good", resource_version="3")
        monkeypatch.setattr(k8s_watch, "Watch", _fake_watch([[bad, good]]))
        source = KubernetesEventSource(_FakeCoreV1(items=[], resource_version="1"))
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(recording_handler)

        await informer.start()
        try:
            await _wait_for(lambda: recording_handler.calls == [("add", "default/good", "3")])
            assert [r.key for r in informer.list()] == ["default/good"]
        finally:
            await informer.stop()

    async def test_bad_listed_event_is_skipped(self, k8s_event_factory) -> None:
        bad = k8s_event_factory(event_name="bad", resource_version="5")
        bad["count"] = "many"
        good = k8s_event_factory(event_name="good", resource_version="6")
        source = KubernetesEventSource(_FakeCoreV1(items=[bad, good], resource_version="6"))

        with capture_logs() as logs:
            records, resource_version = await source.list()

        assert [r.event_name for r in records] == ["good"]
        assert resource_version == "6"
        skipped = [e for e in logs if e["event"] == "skipping unparseable event"]
        assert skipped[0]["log_level"] == "warning"
        assert skipped[0]["error_type"] == "ValueError"


class TestStop:
    async def test_queued_callbacks_do_not_run_after_stop(self, event_factory) -> None:
        started = threading.Event()
        release = threading.Event()
        handled: list[str] = []

        class _Slow:
            def on_add(self, record: EventRecord) -> None:
                started.set()
                release.wait(timeout=2.0)
                handled.append(record.key)

            def on_update(self, old: EventRecord, new: EventRecord) -> None:
                handled.append(new.key)

            def on_delete(self, record: EventRecord) -> None:
                handled.append(record.key)

        records = [event_factory(event_name=f"e{i}") for i in range(5)]
        source = _ScriptedSource(lists=[(records, "1")], watches=[])
        informer = KubernetesEventInformer(source, resync_interval=0, workers=1)
        informer.add_handler(_Slow())

        await informer.start()
        await asyncio.get_running_loop().run_in_executor(None, started.wait, 2.0)
        await informer.stop()
        release.set()
        await asyncio.sleep(0.1)

        assert handled == ["default/e0"]
