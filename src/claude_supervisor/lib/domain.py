"""Attempt, outcome and retry-state models."""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from claude_supervisor.lib.exec.errors import FatalProcessError, TransientApiError


@dataclass(frozen=True, slots=True)
class InputSnapshot:
    """Stdin bytes captured once and replayed to every attempt."""

    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class Attempt:
    """One execution of the child process, from spawn to termination."""

    index: int
    started_at: datetime
    exit_code: int
    duration_seconds: float
    output: bytes | None = None
    signal: signal.Signals | None = None
    spawn_error: str | None = None
    received_signal: signal.Signals | None = None


@dataclass(frozen=True, slots=True)
class Success:
    exit_code: int = 0


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    exit_code: int
    reason: str
    suggested_delay_ms: int | None
    error: TransientApiError


@dataclass(frozen=True, slots=True)
class FatalFailure:
    exit_code: int
    reason: str
    error: FatalProcessError


Outcome = Success | RetryableFailure | FatalFailure


class SupervisorState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    DECIDING = "deciding"
    SLEEPING = "sleeping"
    DONE = "done"


class TerminalReason(StrEnum):
    SUCCESS = "success"
    NON_RETRYABLE = "non_retryable"
    RETRIES_EXHAUSTED = "retries_exhausted"
    INTERRUPTED = "interrupted"


@dataclass(slots=True)
class RetryState:
    """Mutable loop state owned by a single supervisor run."""

    attempt_index: int = 0
    total_wait_ms: int = 0
    last_suggested_delay_ms: int | None = None
    state: SupervisorState = SupervisorState.IDLE
    history: list[SupervisorState] = field(default_factory=list)

    def transition(self, new_state: SupervisorState) -> None:
        if self.state == SupervisorState.DONE:
            raise RuntimeError("Supervisor already finished; DONE is terminal.")
        self.history.append(new_state)
        self.state = new_state


@dataclass(frozen=True, slots=True)
class SupervisorResult:
    """Terminal result of a supervisor run."""

    outcome: Outcome | None
    attempts: int
    exit_code: int
    reason: TerminalReason
    message: str
    total_wait_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.reason == TerminalReason.SUCCESS
