"""Shared fixtures for eventrouter tests.

Provides event factories, a thread-safe recording sink and a recording
stream handler so tests can drive the router without a Kubernetes cluster.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from eventrouter.models.events import EventRecord
from eventrouter.observability.metrics import MetricRegistry
from eventrouter.sinks.base import Sink

_NOW = datetime.now(UTC)
_5_MIN_AGO = _NOW - timedelta(minutes=5)


# ---------------------------------------------------------------------------
# Event factory helpers
# ---------------------------------------------------------------------------


def make_event(
    kind: str = "Pod",
    name: str = "p1",
    namespace: str = "default",
    reason: str = "Evicted",
    source_host: str = "kubelet-1",
    event_name: str = "p1.16a2",
    severity: str = "Warning",
    message: str = "The node was low on resource: memory.",
    count: int = 1,
    resource_version: str = "100",
    uid: str = "",
) -> EventRecord:
    """Create an EventRecord with sensible defaults for testing."""
    return EventRecord(
        kind=kind,
        name=name,
        namespace=namespace,
        reason=reason,
        source_host=source_host,
        event_name=event_name,
        severity=severity,
        message=message,
        event_namespace=namespace,
        uid=uid or f"uid-{event_name}",
        resource_version=resource_version,
        source_component="kubelet",
        count=count,
        first_timestamp=_5_MIN_AGO,
        last_timestamp=_NOW,
    )


def make_k8s_event(
    event_name: str = "p1.16a2",
    namespace: str = "default",
    severity: str = "Warning",
    reason: str = "Evicted",
    count: int = 1,
    resource_version: str = "100",
) -> dict[str, Any]:
    """Create a core/v1 Event in API JSON form."""
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": event_name,
            "namespace": namespace,
            "uid": f"uid-{event_name}",
            "resourceVersion": resource_version,
        },
        "involvedObject": {"kind": "Pod", "name": "p1", "namespace": namespace},
        "reason": reason,
        "message": "The node was low on resource: memory.",
        "type": severity,
        "source": {"component": "kubelet", "host": "kubelet-1"},
        "count": count,
        "firstTimestamp": "2024-01-15T10:30:00Z",
        "lastTimestamp": "2024-01-15T10:35:00Z",
    }


# ---------------------------------------------------------------------------
# Recording collaborators
# ---------------------------------------------------------------------------


class RecordingSink(Sink):
    """Keeps every (new, old) pair it is given."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[EventRecord, EventRecord | None]] = []

    @property
    def sink_name(self) -> str:
        return "recording"

    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        with self._lock:
            self.calls.append((new, old))


class RecordingHandler:
    """EventHandler that records ``(callback, key, ...)`` tuples."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[str, ...]] = []
        self.threads: set[str] = set()

    def _record(self, *entry: str) -> None:
        with self._lock:
            self.calls.append(entry)
            self.threads.add(threading.current_thread().name)

    def on_add(self, record: EventRecord) -> None:
        self._record("add", record.key, record.resource_version)

    def on_update(self, old: EventRecord, new: EventRecord) -> None:
        self._record("update", new.key, old.resource_version, new.resource_version)

    def on_delete(self, record: EventRecord) -> None:
        self._record("delete", record.key)


@pytest.fixture
def event_factory() -> Callable[..., EventRecord]:
    return make_event


@pytest.fixture
def k8s_event_factory() -> Callable[..., dict[str, Any]]:
    return make_k8s_event


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def metrics() -> MetricRegistry:
    """A fresh, enabled registry per test."""
    return MetricRegistry(enabled=True)
