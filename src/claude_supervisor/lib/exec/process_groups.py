"""Process-group helpers for child lifecycle management."""

from __future__ import annotations

import asyncio
import os
import signal

DEFAULT_KILL_GRACE_SECONDS = 2.0


def signal_child(
    process: asyncio.subprocess.Process,
    signum: signal.Signals,
    *,
    own_group: bool,
) -> None:
    """Send one signal to the child, or to its whole process group.

    The child may exit between returncode checks and signal delivery, so
    ProcessLookupError is treated as an expected race.
    """

    if process.returncode is not None:
        return

    pid = process.pid
    if pid is None:
        return

    try:
        if own_group:
            os.killpg(os.getpgid(pid), signum)
        else:
            process.send_signal(signum)
    except ProcessLookupError:
        return


async def interrupt_process(
    process: asyncio.subprocess.Process,
    *,
    own_group: bool,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Interrupt the child like Ctrl-C would, force-killing it after the grace period."""

    if process.returncode is not None:
        return

    signal_child(process, signal.SIGINT, own_group=own_group)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except TimeoutError:
        if process.returncode is None:
            signal_child(process, signal.SIGKILL, own_group=own_group)
            await process.wait()
