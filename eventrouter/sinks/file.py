"""Durable append-only sink writing JSON lines to a local file.

File I/O runs in a thread-pool executor so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TextIO

import structlog

from eventrouter.sinks.base import BufferedSink, EventData

_log = structlog.get_logger(component="sinks.file")


class FileSink(BufferedSink):
    """Appends one JSON envelope per line to *path*.

    Args:
        path:  Target file; parent directories are created.
        fsync: Force each batch to disk before acknowledging it.
    """

    def __init__(
        self,
        path: str,
        fsync: bool = False,
        buffer_size: int = 1500,
        batch_size: int = 100,
        discard_messages: bool = True,
    ) -> None:
        if not path:
            raise ValueError("File sink path must not be empty")
        super().__init__(buffer_size=buffer_size, batch_size=batch_size, discard_messages=discard_messages)
        self._path = Path(path)
        self._fsync = fsync
        self._file: TextIO | None = None

    @property
    def sink_name(self) -> str:
        return "file"

    async def _open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("a", encoding="utf-8")
        _log.info("file sink opened", path=str(self._path))

    async def _deliver(self, batch: list[EventData]) -> None:
        lines = "".join(data.to_json() + "\n" for data in batch)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, lines)

    def _write_sync(self, lines: str) -> None:
        """Blocking write; runs inside a thread executor."""
        assert self._file is not None
        self._file.write(lines)
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())

    async def _close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
