"""Prometheus counters for routed events.

One counter family per severity class, every family keyed by the same six
labels.  The registry is injected rather than module-global so each router
(and each test) owns an isolated ``CollectorRegistry``.
"""

from __future__ import annotations

import threading

from prometheus_client import CollectorRegistry, Counter

from eventrouter.models.events import LabelTuple, SeverityClass

LABEL_NAMES: tuple[str, ...] = (
    "involved_object_kind",
    "involved_object_name",
    "involved_object_namespace",
    "reason",
    "source",
    "event_name",
)

_FAMILIES: dict[SeverityClass, tuple[str, str]] = {
    SeverityClass.WARNING: (
        "events_warnings_total",
        "Total number of warning events in the kubernetes cluster",
    ),
    SeverityClass.NORMAL: (
        "events_normal_total",
        "Total number of normal events in the kubernetes cluster",
    ),
    SeverityClass.INFO: (
        "events_info_total",
        "Total number of info events in the kubernetes cluster",
    ),
    SeverityClass.UNKNOWN: (
        "events_unknown_total",
        "Total number of events of unknown type in the kubernetes cluster",
    ),
}


class MetricRegistry:
    """Four label-keyed event counters, safe to call from any thread.

    When ``enabled`` is False no counters are created or registered, and
    every operation is a no-op.

    ``try_remove`` needs to know whether a key exists before removing it,
    which prometheus_client does not expose atomically, so key membership is
    tracked here under a single lock alongside the counter mutation.
    """

    def __init__(self, enabled: bool = True, registry: CollectorRegistry | None = None) -> None:
        self._enabled = enabled
        self._registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._counters: dict[SeverityClass, Counter] = {}
        self._keys: dict[SeverityClass, set[LabelTuple]] = {cls: set() for cls in SeverityClass}
        if enabled:
            for cls, (name, documentation) in _FAMILIES.items():
                self._counters[cls] = Counter(
                    name,
                    documentation,
                    labelnames=LABEL_NAMES,
                    registry=self._registry,
                )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry:
        """Registry holding the counters; empty when metrics are disabled."""
        return self._registry

    def increment(self, severity: SeverityClass, labels: LabelTuple) -> None:
        """Add one to *labels* in the *severity* counter, creating it at 1."""
        if not self._enabled:
            return
        with self._lock:
            self._counters[severity].labels(*labels).inc()
            self._keys[severity].add(labels)

    def try_remove(self, severity: SeverityClass, labels: LabelTuple) -> bool:
        """Drop the *labels* entry from the *severity* counter.

        Returns True when an entry existed and was removed, False when there
        was nothing to remove (never seen, already removed, or disabled).
        """
        if not self._enabled:
            return False
        with self._lock:
            if labels not in self._keys[severity]:
                return False
            self._counters[severity].remove(*labels)
            self._keys[severity].discard(labels)
            return True

    def value(self, severity: SeverityClass, labels: LabelTuple) -> float:
        """Current count for *labels*; 0.0 when absent."""
        if not self._enabled:
            return 0.0
        name, _ = _FAMILIES[severity]
        sample = self._registry.get_sample_value(name, dict(zip(LABEL_NAMES, labels, strict=True)))
        return sample if sample is not None else 0.0

    def entry_count(self, severity: SeverityClass) -> int:
        """Number of label tuples currently present in the *severity* counter."""
        with self._lock:
            return len(self._keys[severity])
