"""Signal translation and interruptible sleep tests."""

from __future__ import annotations

import asyncio
import signal
import time
from pathlib import Path

import pytest

from claude_supervisor.lib.exec.signals import (
    SignalForwarder,
    SleepInterrupter,
    decode_return_code,
    interruptible_sleep,
    signal_to_exit_code,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, (0, None)),
        (3, (3, None)),
        (-signal.SIGTERM.value, (143, signal.SIGTERM)),
        (-signal.SIGKILL.value, (137, signal.SIGKILL)),
        (-signal.SIGINT.value, (130, signal.SIGINT)),
    ],
)
def test_decode_return_code(raw: int, expected: tuple[int, signal.Signals | None]) -> None:
    assert decode_return_code(raw) == expected


def test_signal_to_exit_code() -> None:
    assert signal_to_exit_code(None) is None
    assert signal_to_exit_code(signal.SIGINT) == 130
    assert signal_to_exit_code(signal.SIGTERM) == 143


@pytest.mark.asyncio
async def test_interruptible_sleep_runs_to_completion() -> None:
    assert await interruptible_sleep(0.01) is None
    assert await interruptible_sleep(0) is None


@pytest.mark.asyncio
async def test_sleep_interrupter_returns_received_signal() -> None:
    with SleepInterrupter() as interrupter:
        asyncio.get_running_loop().call_later(0.01, interrupter.on_signal, signal.SIGTERM)
        received = await interrupter.sleep(5.0)

    assert received == signal.SIGTERM
    assert interrupter.received_signal == signal.SIGTERM


async def _spawn_sleeper(
    mock_child: tuple[str, ...],
    pid_file: Path,
    *extra: str,
) -> asyncio.subprocess.Process:
    process = await asyncio.create_subprocess_exec(
        *mock_child,
        "--pid-file",
        str(pid_file),
        "--duration",
        "30",
        *extra,
        start_new_session=True,
    )
    deadline = time.monotonic() + 15
    while not pid_file.exists():
        assert time.monotonic() < deadline, "child never started"
        await asyncio.sleep(0.02)
    return process


@pytest.mark.asyncio
async def test_forwarder_relays_sigterm_to_child(
    mock_child: tuple[str, ...],
    tmp_path: Path,
) -> None:
    process = await _spawn_sleeper(mock_child, tmp_path / "child.pid")
    forwarder = SignalForwarder(process, own_group=True)

    forwarder.on_signal(signal.SIGTERM)
    returncode = await asyncio.wait_for(process.wait(), timeout=10)

    assert returncode == -signal.SIGTERM.value
    assert forwarder.received_signal == signal.SIGTERM


@pytest.mark.asyncio
async def test_second_forwarded_signal_escalates_to_sigkill(
    mock_child: tuple[str, ...],
    tmp_path: Path,
) -> None:
    process = await _spawn_sleeper(mock_child, tmp_path / "child.pid", "--ignore-signals")
    forwarder = SignalForwarder(process, own_group=True)

    forwarder.on_signal(signal.SIGTERM)
    await asyncio.sleep(0.2)
    assert process.returncode is None

    forwarder.on_signal(signal.SIGTERM)
    returncode = await asyncio.wait_for(process.wait(), timeout=10)

    assert returncode == -signal.SIGKILL.value


@pytest.mark.asyncio
async def test_passthrough_forwarder_leaves_sigint_to_the_terminal(
    mock_child: tuple[str, ...],
    tmp_path: Path,
) -> None:
    process = await _spawn_sleeper(mock_child, tmp_path / "child.pid")
    forwarder = SignalForwarder(process, own_group=False)
    try:
        forwarder.on_signal(signal.SIGINT)
        await asyncio.sleep(0.2)
        assert process.returncode is None
        assert forwarder.received_signal == signal.SIGINT
    finally:
        process.kill()
        await process.wait()
