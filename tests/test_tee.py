"""Output tee strategy tests."""

from __future__ import annotations

import asyncio
import io

import pytest

from claude_supervisor.lib.exec.tee import (
    CaptureBuffer,
    CaptureMode,
    OutputTee,
    PassthroughMode,
    select_tee_mode,
)


class _ClosedSink(io.BytesIO):
    def write(self, data: bytes) -> int:  # type: ignore[override]
        _ = data
        raise BrokenPipeError


@pytest.mark.asyncio
async def test_output_tee_forwards_and_records_in_order() -> None:
    reader = asyncio.StreamReader()
    for chunk in (b"first\n", b"\x1b[2K", b"second\n"):
        reader.feed_data(chunk)
    reader.feed_eof()

    sink = io.BytesIO()
    buffer = CaptureBuffer()
    total = await OutputTee(sink, buffer).pump(reader)

    assert total == len(b"first\n\x1b[2Ksecond\n")
    assert sink.getvalue() == b"first\n\x1b[2Ksecond\n"
    assert buffer.getvalue() == b"first\n\x1b[2Ksecond\n"


@pytest.mark.asyncio
async def test_output_tee_keeps_capturing_when_sink_breaks() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"overloaded")
    reader.feed_eof()

    buffer = CaptureBuffer()
    await OutputTee(_ClosedSink(), buffer).pump(reader)

    assert buffer.getvalue() == b"overloaded"


@pytest.mark.asyncio
async def test_capture_mode_tees_both_child_streams(mock_child: tuple[str, ...]) -> None:
    stdout_sink = io.BytesIO()
    stderr_sink = io.BytesIO()
    mode = CaptureMode(stdout_sink=stdout_sink, stderr_sink=stderr_sink)

    process = await asyncio.create_subprocess_exec(
        *mock_child,
        "--stdout",
        "to-stdout",
        "--stderr",
        "to-stderr",
        stdout=mode.stdio_target,
        stderr=mode.stdio_target,
    )
    tasks = mode.start(process)
    await process.wait()
    await asyncio.gather(*tasks)

    assert stdout_sink.getvalue() == b"to-stdout\n"
    assert stderr_sink.getvalue() == b"to-stderr\n"
    captured = mode.captured_output()
    assert captured is not None
    assert b"to-stdout\n" in captured
    assert b"to-stderr\n" in captured


@pytest.mark.asyncio
async def test_capture_mode_drains_large_output(mock_child: tuple[str, ...]) -> None:
    mode = CaptureMode(stdout_sink=io.BytesIO(), stderr_sink=io.BytesIO())
    process = await asyncio.create_subprocess_exec(
        *mock_child,
        "--bulk-bytes",
        str(1024 * 1024),
        stdout=mode.stdio_target,
        stderr=mode.stdio_target,
    )
    tasks = mode.start(process)
    await asyncio.wait_for(process.wait(), timeout=20)
    await asyncio.gather(*tasks)

    captured = mode.captured_output()
    assert captured is not None
    assert len(captured) == 1024 * 1024


def test_select_tee_mode_picks_strategy_once() -> None:
    assert isinstance(select_tee_mode(interactive=True, force_capture=False), PassthroughMode)
    assert isinstance(select_tee_mode(interactive=True, force_capture=True), CaptureMode)
    assert isinstance(select_tee_mode(interactive=False, force_capture=False), CaptureMode)


def test_passthrough_mode_intercepts_nothing() -> None:
    mode = PassthroughMode()
    assert mode.captures is False
    assert mode.stdio_target is None
    assert mode.captured_output() is None
