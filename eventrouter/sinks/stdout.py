"""Sink that prints each routed event as one JSON line on stdout."""

from __future__ import annotations

import json
import sys
import threading
from typing import TextIO

from eventrouter.models.events import EventRecord
from eventrouter.sinks.base import EventData, Sink


class StdoutSink(Sink):
    """Writes newline-delimited JSON envelopes.

    Args:
        json_namespace: When set, each line is ``{json_namespace: envelope}``.
        stream:         Output stream; defaults to ``sys.stdout``.
    """

    def __init__(self, json_namespace: str = "", stream: TextIO | None = None) -> None:
        self._namespace = json_namespace
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def sink_name(self) -> str:
        return "stdout"

    def publish(self, new: EventRecord, old: EventRecord | None) -> None:
        payload: object = EventData.build(new, old).to_dict()
        if self._namespace:
            payload = {self._namespace: payload}
        line = json.dumps(payload, default=str, separators=(",", ":"))
        stream = self._stream or sys.stdout
        with self._lock:
            stream.write(line + "\n")
            stream.flush()
