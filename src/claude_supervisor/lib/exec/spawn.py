"""Async child-process attempts with stdin replay and output tees."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, BinaryIO, Protocol

import structlog

from claude_supervisor.lib.domain import Attempt
from claude_supervisor.lib.exec.process_groups import (
    DEFAULT_KILL_GRACE_SECONDS,
    interrupt_process,
)
from claude_supervisor.lib.exec.signals import SignalForwarder, decode_return_code
from claude_supervisor.lib.exec.tee import TeeMode

EXIT_COMMAND_NOT_FOUND = 127
EXIT_COMMAND_NOT_EXECUTABLE = 126
_STDIN_CHUNK_BYTES = 64 * 1024

logger = structlog.get_logger(__name__)


class AttemptRunnerProtocol(Protocol):
    async def run(
        self,
        index: int,
        stdin_view: BinaryIO | None,
        tee_mode: TeeMode,
    ) -> Attempt: ...


async def _feed_stdin(writer: asyncio.StreamWriter, source: BinaryIO) -> None:
    try:
        while True:
            chunk = source.read(_STDIN_CHUNK_BYTES)
            if not chunk:
                break
            writer.write(chunk)
            await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited or closed stdin before consuming everything.
        logger.debug("Child closed stdin before replay finished.")
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass


def _spawn_failure(index: int, started_at: datetime, started: float, exc: OSError) -> Attempt:
    exit_code = (
        EXIT_COMMAND_NOT_EXECUTABLE
        if isinstance(exc, PermissionError)
        else EXIT_COMMAND_NOT_FOUND
    )
    return Attempt(
        index=index,
        started_at=started_at,
        exit_code=exit_code,
        duration_seconds=time.monotonic() - started,
        spawn_error=f"failed to spawn: {exc}",
    )


@dataclass(frozen=True, slots=True)
class AttemptRunner:
    """Spawn one child attempt and wait for it to finish."""

    command: str
    args: tuple[str, ...] = ()
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS

    @property
    def argv(self) -> Sequence[str]:
        return (self.command, *self.args)

    async def run(
        self,
        index: int,
        stdin_view: BinaryIO | None,
        tee_mode: TeeMode,
    ) -> Attempt:
        """Run attempt `index`; the attempt boundary joins every I/O task."""

        started_at = datetime.now(UTC)
        started = time.monotonic()
        # Capture mode owns a process group so forwarded signals reach grandchildren;
        # passthrough stays in the terminal's foreground group for job control.
        own_group = tee_mode.captures
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE if stdin_view is not None else None,
                stdout=tee_mode.stdio_target,
                stderr=tee_mode.stdio_target,
                start_new_session=own_group,
            )
        except OSError as exc:
            logger.error("Failed to spawn child process.", command=self.command, error=str(exc))
            return _spawn_failure(index, started_at, started, exc)

        io_tasks: list[asyncio.Task[Any]] = [*tee_mode.start(process)]
        if stdin_view is not None and process.stdin is not None:
            io_tasks.append(asyncio.create_task(_feed_stdin(process.stdin, stdin_view)))

        logger.debug("Spawned child process.", attempt=index + 1, pid=process.pid)
        try:
            with SignalForwarder(process, own_group=own_group) as forwarder:
                raw_return_code = await process.wait()
                received_signal = forwarder.received_signal
        except asyncio.CancelledError:
            await interrupt_process(
                process,
                own_group=own_group,
                grace_seconds=self.kill_grace_seconds,
            )
            raise
        finally:
            await asyncio.gather(*io_tasks)

        exit_code, terminating_signal = decode_return_code(raw_return_code)
        return Attempt(
            index=index,
            started_at=started_at,
            exit_code=exit_code,
            duration_seconds=time.monotonic() - started,
            output=tee_mode.captured_output(),
            signal=terminating_signal,
            received_signal=received_signal,
        )
