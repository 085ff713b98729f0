"""Capture piped stdin once and replay it to every attempt."""

from __future__ import annotations

import io
import sys
from typing import BinaryIO

import structlog

from claude_supervisor.lib.domain import InputSnapshot
from claude_supervisor.lib.exec.errors import InputTooLargeError

DEFAULT_MAX_STDIN_BYTES = 16 * 1024 * 1024
_READ_CHUNK_BYTES = 64 * 1024

logger = structlog.get_logger(__name__)


def _is_tty(source: BinaryIO) -> bool:
    try:
        return source.isatty()
    except (AttributeError, ValueError):
        return False


class InputReplay:
    """Bounded in-memory snapshot of the supervisor's stdin."""

    def __init__(
        self,
        source: BinaryIO | None = None,
        *,
        max_bytes: int = DEFAULT_MAX_STDIN_BYTES,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0.")
        self._source = source if source is not None else sys.stdin.buffer
        self._max_bytes = max_bytes
        self._snapshot: InputSnapshot | None = None
        self._captured = False

    @property
    def is_interactive(self) -> bool:
        return _is_tty(self._source)

    def capture_once(self) -> InputSnapshot | None:
        """Read the source to EOF on first call; later calls return the same snapshot."""

        if self._captured:
            return self._snapshot

        if self.is_interactive:
            self._captured = True
            return None

        buffer = bytearray()
        while True:
            chunk = self._source.read(min(_READ_CHUNK_BYTES, self._max_bytes + 1 - len(buffer)))
            if not chunk:
                break
            buffer.extend(chunk)
            if len(buffer) > self._max_bytes:
                raise InputTooLargeError(self._max_bytes)

        self._snapshot = InputSnapshot(data=bytes(buffer))
        self._captured = True
        logger.debug("Captured stdin for replay.", size_bytes=len(buffer))
        return self._snapshot

    def stream_for_attempt(self) -> BinaryIO | None:
        """Return a fresh reader over the snapshot, or None when stdin is inherited."""

        snapshot = self.capture_once()
        if snapshot is None:
            return None
        return io.BytesIO(snapshot.data)
