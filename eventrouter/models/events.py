"""Core event data structures and enumerations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, NamedTuple


class SeverityClass(StrEnum):
    """Counter family an event is accounted under."""

    NORMAL = "Normal"
    WARNING = "Warning"
    INFO = "Info"
    UNKNOWN = "Unknown"


class LabelTuple(NamedTuple):
    """Counter key derived from an EventRecord.

    Field order matches the exported label names of every counter family.
    """

    kind: str
    name: str
    namespace: str
    reason: str
    source_host: str
    event_name: str


@dataclass(frozen=True)
class EventRecord:
    """One Kubernetes core/v1 Event as seen by the router.

    ``kind``, ``name`` and ``namespace`` describe the involved object;
    ``event_name`` and ``event_namespace`` identify the Event itself.
    ``severity`` is the raw ``type`` string reported by the API server.
    """

    kind: str
    name: str
    namespace: str
    reason: str
    source_host: str
    event_name: str
    severity: str
    message: str = ""
    event_namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    source_component: str = ""
    count: int = 1
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    raw_object: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> str:
        """Cache key of the Event object (``namespace/name``)."""
        if self.event_namespace:
            return f"{self.event_namespace}/{self.event_name}"
        return self.event_name

    @classmethod
    def from_k8s(cls, obj: Mapping[str, Any]) -> EventRecord:
        """Build a record from an Event in API JSON form (camelCase keys)."""
        metadata = obj.get("metadata") or {}
        involved = obj.get("involvedObject") or {}
        source = obj.get("source") or {}
        return cls(
            kind=str(involved.get("kind") or ""),
            name=str(involved.get("name") or ""),
            namespace=str(involved.get("namespace") or ""),
            reason=str(obj.get("reason") or ""),
            source_host=str(source.get("host") or ""),
            event_name=str(metadata.get("name") or ""),
            severity=str(obj.get("type") or ""),
            message=str(obj.get("message") or ""),
            event_namespace=str(metadata.get("namespace") or ""),
            uid=str(metadata.get("uid") or ""),
            resource_version=str(metadata.get("resourceVersion") or ""),
            source_component=str(source.get("component") or ""),
            count=int(obj.get("count") or 1),
            first_timestamp=_parse_timestamp(obj.get("firstTimestamp")),
            last_timestamp=_parse_timestamp(obj.get("lastTimestamp")),
            raw_object=dict(obj),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise for sinks; the raw API object wins when present."""
        if self.raw_object is not None:
            return self.raw_object
        return {
            "metadata": {
                "name": self.event_name,
                "namespace": self.event_namespace,
                "uid": self.uid,
                "resourceVersion": self.resource_version,
            },
            "involvedObject": {
                "kind": self.kind,
                "name": self.name,
                "namespace": self.namespace,
            },
            "reason": self.reason,
            "message": self.message,
            "type": self.severity,
            "source": {"component": self.source_component, "host": self.source_host},
            "count": self.count,
            "firstTimestamp": _format_timestamp(self.first_timestamp),
            "lastTimestamp": _format_timestamp(self.last_timestamp),
        }


def _parse_timestamp(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()
