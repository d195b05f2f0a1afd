"""Core data structures for eventrouter."""

from eventrouter.models.config import EventRouterConfig, SinkConfig
from eventrouter.models.events import EventRecord, LabelTuple, SeverityClass

__all__ = [
    "EventRecord",
    "EventRouterConfig",
    "LabelTuple",
    "SeverityClass",
    "SinkConfig",
]
