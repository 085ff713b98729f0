"""Attempt runner tests against a real child process."""

from __future__ import annotations

import asyncio
import io
import os
import signal
import time
from pathlib import Path

import pytest

from claude_supervisor.lib.exec.spawn import (
    EXIT_COMMAND_NOT_EXECUTABLE,
    EXIT_COMMAND_NOT_FOUND,
    AttemptRunner,
)
from claude_supervisor.lib.exec.tee import CaptureMode, PassthroughMode


def _runner(mock_child: tuple[str, ...], *args: str) -> AttemptRunner:
    return AttemptRunner(command=mock_child[0], args=(*mock_child[1:], *args))


def _capture() -> CaptureMode:
    return CaptureMode(stdout_sink=io.BytesIO(), stderr_sink=io.BytesIO())


@pytest.mark.asyncio
async def test_successful_attempt_records_output_and_timing(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(mock_child, "--stdout", "all good").run(0, None, _capture())

    assert attempt.index == 0
    assert attempt.exit_code == 0
    assert attempt.signal is None
    assert attempt.spawn_error is None
    assert attempt.output == b"all good\n"
    assert attempt.duration_seconds >= 0
    assert attempt.started_at.tzinfo is not None


@pytest.mark.asyncio
async def test_non_zero_exit_code_is_propagated(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(
        mock_child,
        "--stderr",
        "API Error: 500 Overloaded",
        "--exit-code",
        "3",
    ).run(2, None, _capture())

    assert attempt.index == 2
    assert attempt.exit_code == 3
    assert attempt.output is not None
    assert b"Overloaded" in attempt.output


@pytest.mark.asyncio
async def test_stdin_view_is_fed_to_child(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(mock_child, "--echo-stdin").run(
        0,
        io.BytesIO(b"replayed input"),
        _capture(),
    )
    assert attempt.output == b"replayed input"


@pytest.mark.asyncio
async def test_child_ignoring_stdin_does_not_break_attempt(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(mock_child, "--stdout", "ignored").run(
        0,
        io.BytesIO(b"y" * (4 * 1024 * 1024)),
        _capture(),
    )
    assert attempt.exit_code == 0


@pytest.mark.asyncio
async def test_signal_termination_is_recorded(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(mock_child, "--kill-self", "SIGTERM").run(0, None, _capture())

    assert attempt.signal == signal.SIGTERM
    assert attempt.exit_code == 128 + signal.SIGTERM.value


@pytest.mark.asyncio
async def test_missing_binary_is_reported_as_spawn_error(tmp_path: Path) -> None:
    runner = AttemptRunner(command=str(tmp_path / "no-such-claude"))
    attempt = await runner.run(0, None, _capture())

    assert attempt.exit_code == EXIT_COMMAND_NOT_FOUND
    assert attempt.spawn_error is not None
    assert attempt.output is None


@pytest.mark.asyncio
async def test_non_executable_binary_is_reported_as_spawn_error(tmp_path: Path) -> None:
    script = tmp_path / "claude"
    script.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    script.chmod(0o644)

    attempt = await AttemptRunner(command=str(script)).run(0, None, _capture())

    assert attempt.exit_code == EXIT_COMMAND_NOT_EXECUTABLE
    assert attempt.spawn_error is not None


@pytest.mark.asyncio
async def test_passthrough_attempt_captures_nothing(mock_child: tuple[str, ...]) -> None:
    attempt = await _runner(mock_child, "--exit-code", "4").run(0, None, PassthroughMode())

    assert attempt.exit_code == 4
    assert attempt.output is None


async def _wait_for_pid(pid_file: Path, timeout: float = 15.0) -> int:
    deadline = time.monotonic() + timeout
    while not pid_file.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"child never wrote {pid_file}")
        await asyncio.sleep(0.02)
    return int(pid_file.read_text(encoding="utf-8"))


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@pytest.mark.asyncio
async def test_cancelled_attempt_interrupts_and_reaps_child(
    mock_child: tuple[str, ...],
    tmp_path: Path,
) -> None:
    pid_file = tmp_path / "child.pid"
    runner = _runner(mock_child, "--pid-file", str(pid_file), "--duration", "30")
    task = asyncio.create_task(runner.run(0, None, _capture()))
    child_pid = await _wait_for_pid(pid_file)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not _pid_alive(child_pid)


@pytest.mark.asyncio
async def test_cancelled_attempt_kills_child_ignoring_interrupt(
    mock_child: tuple[str, ...],
    tmp_path: Path,
) -> None:
    pid_file = tmp_path / "child.pid"
    runner = AttemptRunner(
        command=mock_child[0],
        args=(*mock_child[1:], "--pid-file", str(pid_file), "--ignore-signals", "--duration", "30"),
        kill_grace_seconds=0.2,
    )
    task = asyncio.create_task(runner.run(0, None, _capture()))
    child_pid = await _wait_for_pid(pid_file)

    started = time.monotonic()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert time.monotonic() - started < 10
    assert not _pid_alive(child_pid)
