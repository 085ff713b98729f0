"""Output tee strategies: interactive passthrough vs capture-and-forward."""

from __future__ import annotations

import asyncio
import sys
from typing import BinaryIO, Protocol

import structlog

_READ_CHUNK_BYTES = 64 * 1024

logger = structlog.get_logger(__name__)


class CaptureBuffer:
    """Union of both child streams in arrival order."""

    def __init__(self) -> None:
        self._chunks = bytearray()

    def append(self, chunk: bytes) -> None:
        self._chunks.extend(chunk)

    def getvalue(self) -> bytes:
        return bytes(self._chunks)


class OutputTee:
    """Forward one child stream live to a sink while recording a copy."""

    def __init__(self, sink: BinaryIO, buffer: CaptureBuffer) -> None:
        self._sink = sink
        self._buffer = buffer

    async def pump(self, reader: asyncio.StreamReader) -> int:
        total = 0
        while True:
            chunk = await reader.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            self._buffer.append(chunk)
            try:
                self._sink.write(chunk)
                self._sink.flush()
            except (BrokenPipeError, ValueError):
                # Keep draining so the child never blocks on a full pipe.
                logger.debug("Output sink closed; continuing capture only.")
        return total


class TeeMode(Protocol):
    """How a child's stdout/stderr are wired for one run."""

    @property
    def captures(self) -> bool: ...

    @property
    def stdio_target(self) -> int | None: ...

    def start(self, process: asyncio.subprocess.Process) -> list[asyncio.Task[int]]: ...

    def captured_output(self) -> bytes | None: ...


class PassthroughMode:
    """Child inherits the supervisor's terminal; nothing is intercepted."""

    @property
    def captures(self) -> bool:
        return False

    @property
    def stdio_target(self) -> int | None:
        return None

    def start(self, process: asyncio.subprocess.Process) -> list[asyncio.Task[int]]:
        _ = process
        return []

    def captured_output(self) -> bytes | None:
        return None


class CaptureMode:
    """Pipe both streams through tees that echo live and accumulate."""

    def __init__(
        self,
        *,
        stdout_sink: BinaryIO | None = None,
        stderr_sink: BinaryIO | None = None,
    ) -> None:
        self._stdout_sink = stdout_sink
        self._stderr_sink = stderr_sink
        self._buffer = CaptureBuffer()

    @property
    def captures(self) -> bool:
        return True

    @property
    def stdio_target(self) -> int | None:
        return asyncio.subprocess.PIPE

    def start(self, process: asyncio.subprocess.Process) -> list[asyncio.Task[int]]:
        if process.stdout is None or process.stderr is None:
            raise RuntimeError("Subprocess did not expose stdout/stderr pipes.")

        # Each attempt gets a fresh buffer; prior attempts' output stays on the terminal.
        self._buffer = CaptureBuffer()
        stdout_tee = OutputTee(self._stdout_sink or sys.stdout.buffer, self._buffer)
        stderr_tee = OutputTee(self._stderr_sink or sys.stderr.buffer, self._buffer)
        return [
            asyncio.create_task(stdout_tee.pump(process.stdout)),
            asyncio.create_task(stderr_tee.pump(process.stderr)),
        ]

    def captured_output(self) -> bytes | None:
        return self._buffer.getvalue()


def select_tee_mode(*, interactive: bool, force_capture: bool) -> TeeMode:
    """Pick the strategy once per run."""

    if interactive and not force_capture:
        return PassthroughMode()
    return CaptureMode()
