"""Signal forwarding and interruptible sleeps for the retry loop."""

from __future__ import annotations

import asyncio
import os
import signal
from threading import Lock, RLock
from types import FrameType
from typing import Final, Protocol, cast

from claude_supervisor.lib.exec.process_groups import signal_child

TARGET_SIGNALS: Final[tuple[signal.Signals, ...]] = (signal.SIGINT, signal.SIGTERM)


def signal_to_exit_code(received_signal: signal.Signals | None) -> int | None:
    """Shell exit code for a termination signal the supervisor itself received."""

    if received_signal is None:
        return None
    return 128 + received_signal.value


def decode_return_code(raw_return_code: int) -> tuple[int, signal.Signals | None]:
    """Map an asyncio return code to `(exit_code, terminating_signal)`.

    Negative return codes mean the child died from a signal; they become
    `128 + signum` so callers see the same status a shell would report.
    """

    if raw_return_code >= 0:
        return raw_return_code, None
    signum = -raw_return_code
    try:
        return 128 + signum, signal.Signals(signum)
    except ValueError:
        return 128 + signum, None


class SignalReceiver(Protocol):
    def on_signal(self, signum: signal.Signals) -> None: ...


class SignalCoordinator:
    """Process-global signal demultiplexer for active receivers."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._receivers: set[SignalReceiver] = set()
        self._previous_handlers: dict[signal.Signals, signal.Handlers] = {}
        self._handlers_installed = False

    def register(self, receiver: SignalReceiver) -> None:
        with self._lock:
            self._receivers.add(receiver)
            self._ensure_handlers_installed_locked()

    def unregister(self, receiver: SignalReceiver) -> None:
        with self._lock:
            self._receivers.discard(receiver)
            self._maybe_uninstall_handlers_locked()

    def _ensure_handlers_installed_locked(self) -> bool:
        if self._handlers_installed:
            return True

        previous_handlers: dict[signal.Signals, signal.Handlers] = {}
        try:
            for signum in TARGET_SIGNALS:
                previous_handlers[signum] = cast("signal.Handlers", signal.getsignal(signum))
                signal.signal(signum, self._on_signal)
        except ValueError:
            # Signal handlers can only be changed from the main thread.
            return False

        self._previous_handlers = previous_handlers
        self._handlers_installed = True
        return True

    def _maybe_uninstall_handlers_locked(self) -> None:
        if not self._handlers_installed or self._receivers:
            return

        try:
            for signum in TARGET_SIGNALS:
                signal.signal(signum, self._previous_handlers.get(signum, signal.SIG_DFL))
        except ValueError:
            return

        self._handlers_installed = False
        self._previous_handlers.clear()

    def _dispatch_previous_handler(
        self,
        signum: signal.Signals,
        frame: FrameType | None,
        previous_handler: signal.Handlers,
    ) -> None:
        if previous_handler == signal.SIG_IGN:
            return
        if previous_handler == signal.SIG_DFL:
            signal.signal(signum, signal.SIG_DFL)
            try:
                os.kill(os.getpid(), signum)
            finally:
                with self._lock:
                    if self._handlers_installed:
                        signal.signal(signum, self._on_signal)
            return
        if callable(previous_handler):
            previous_handler(signum.value, frame)

    def _on_signal(self, raw_signum: int, frame: FrameType | None) -> None:
        signum = signal.Signals(raw_signum)
        with self._lock:
            receivers = tuple(self._receivers)
            previous_handler = self._previous_handlers.get(signum, signal.SIG_DFL)

        if receivers:
            for receiver in receivers:
                receiver.on_signal(signum)
            return

        self._dispatch_previous_handler(signum, frame, previous_handler)


_COORDINATOR_LOCK = Lock()
_COORDINATOR: SignalCoordinator | None = None


def signal_coordinator() -> SignalCoordinator:
    """Return the process-global signal coordinator singleton."""

    global _COORDINATOR
    if _COORDINATOR is None:
        with _COORDINATOR_LOCK:
            if _COORDINATOR is None:
                _COORDINATOR = SignalCoordinator()
    return _COORDINATOR


class SignalForwarder:
    """Scoped SIGINT/SIGTERM forwarding from the supervisor to the running child.

    With `own_group=False` the child shares the terminal's foreground group,
    which already delivers Ctrl-C to it, so only SIGTERM is relayed.
    """

    def __init__(self, process: asyncio.subprocess.Process, *, own_group: bool) -> None:
        self._process = process
        self._own_group = own_group
        self._received_signal: signal.Signals | None = None
        self._seen_signal_count = 0

    @property
    def received_signal(self) -> signal.Signals | None:
        return self._received_signal

    def __enter__(self) -> SignalForwarder:
        signal_coordinator().register(self)
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        _ = (exc_type, exc, tb)
        signal_coordinator().unregister(self)

    def on_signal(self, signum: signal.Signals) -> None:
        self._received_signal = signum
        if signum == signal.SIGINT and not self._own_group:
            return

        self._seen_signal_count += 1
        signal_child(self._process, signum, own_group=self._own_group)

        if self._seen_signal_count >= 2 and self._process.returncode is None:
            # Second termination signal means "force stop now".
            signal_child(self._process, signal.SIGKILL, own_group=self._own_group)


class SleepInterrupter:
    """Scoped receiver that cuts a backoff sleep short on SIGINT/SIGTERM."""

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._event = asyncio.Event()
        self._received_signal: signal.Signals | None = None

    @property
    def received_signal(self) -> signal.Signals | None:
        return self._received_signal

    def __enter__(self) -> SleepInterrupter:
        signal_coordinator().register(self)
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        _ = (exc_type, exc, tb)
        signal_coordinator().unregister(self)

    def on_signal(self, signum: signal.Signals) -> None:
        self._received_signal = signum
        self._loop.call_soon_threadsafe(self._event.set)

    async def sleep(self, seconds: float) -> signal.Signals | None:
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return None
        return self._received_signal


async def interruptible_sleep(seconds: float) -> signal.Signals | None:
    """Sleep for `seconds`; return the signal that interrupted it, if any."""

    if seconds <= 0:
        return None
    with SleepInterrupter() as interrupter:
        return await interrupter.sleep(seconds)
