"""Retry loop that drives child attempts until success or a terminal failure."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable

import structlog

from claude_supervisor.lib.config.settings import SupervisorConfig
from claude_supervisor.lib.domain import (
    Attempt,
    FatalFailure,
    RetryableFailure,
    RetryState,
    Success,
    SupervisorResult,
    SupervisorState,
    TerminalReason,
)
from claude_supervisor.lib.exec.backoff import BackoffPlanner
from claude_supervisor.lib.exec.errors import FatalProcessError, classify_attempt
from claude_supervisor.lib.exec.patterns import OutputClassifier, PatternMatcher
from claude_supervisor.lib.exec.replay import InputReplay
from claude_supervisor.lib.exec.signals import interruptible_sleep, signal_to_exit_code
from claude_supervisor.lib.exec.spawn import AttemptRunner, AttemptRunnerProtocol
from claude_supervisor.lib.exec.tee import TeeMode, select_tee_mode

logger = structlog.get_logger(__name__)

Sleeper = Callable[[float], Awaitable[signal.Signals | None]]


class Supervisor:
    """Run the child until it succeeds, fails fatally, or exhausts its retries.

    Every collaborator can be injected, which lets tests drive the state
    machine with a fake runner and a recording sleeper.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        *,
        runner: AttemptRunnerProtocol | None = None,
        classifier: OutputClassifier | None = None,
        planner: BackoffPlanner | None = None,
        replay: InputReplay | None = None,
        tee_mode: TeeMode | None = None,
        sleep: Sleeper = interruptible_sleep,
    ) -> None:
        self._config = config
        self._runner = runner or AttemptRunner(
            command=config.command,
            args=config.args,
            kill_grace_seconds=config.kill_grace_seconds,
        )
        self._classifier = classifier or PatternMatcher(config.patterns)
        self._planner = planner or BackoffPlanner(jitter_ratio=config.jitter_ratio)
        self._replay = replay or InputReplay(max_bytes=config.max_stdin_bytes)
        self._tee_mode = tee_mode or select_tee_mode(
            interactive=config.interactive,
            force_capture=config.force_capture,
        )
        self._sleep = sleep

    @property
    def tee_mode(self) -> TeeMode:
        return self._tee_mode

    async def run(self, state: RetryState | None = None) -> SupervisorResult:
        """Drive the retry loop; raises InputTooLargeError before any attempt."""

        state = state or RetryState()
        # Snapshot stdin up front so an oversized pipe fails before the first spawn.
        self._replay.capture_once()

        while True:
            state.transition(SupervisorState.RUNNING)
            attempt = await self._runner.run(
                state.attempt_index,
                self._replay.stream_for_attempt(),
                self._tee_mode,
            )

            state.transition(SupervisorState.DECIDING)
            outcome = classify_attempt(attempt, classifier=self._classifier, config=self._config)

            if isinstance(outcome, Success):
                return self._finish(state, attempt, outcome, TerminalReason.SUCCESS)
            if isinstance(outcome, FatalFailure):
                reason = (
                    TerminalReason.INTERRUPTED
                    if attempt.received_signal is not None
                    else TerminalReason.NON_RETRYABLE
                )
                return self._finish(state, attempt, outcome, reason)

            if state.attempt_index >= self._config.max_retries:
                return self._finish(
                    state,
                    attempt,
                    _exhausted(outcome, attempts=attempt.index + 1),
                    TerminalReason.RETRIES_EXHAUSTED,
                )

            delay_ms = self._planner.next_delay(
                state.attempt_index,
                self._config.base_delay_ms,
                self._config.max_delay_ms,
                outcome.suggested_delay_ms,
            )
            state.last_suggested_delay_ms = outcome.suggested_delay_ms
            logger.warning(
                "Retrying failed attempt.",
                attempt=attempt.index + 1,
                max_attempts=self._config.max_retries + 1,
                exit_code=outcome.exit_code,
                reason=outcome.reason,
                delay_ms=delay_ms,
                suggested_delay_ms=outcome.suggested_delay_ms,
            )

            state.transition(SupervisorState.SLEEPING)
            interrupted_by = await self._sleep(delay_ms / 1000)
            state.total_wait_ms += delay_ms
            if interrupted_by is not None:
                return self._interrupted_while_sleeping(state, attempt, interrupted_by)
            state.attempt_index += 1

    def _finish(
        self,
        state: RetryState,
        attempt: Attempt,
        outcome: Success | FatalFailure,
        reason: TerminalReason,
    ) -> SupervisorResult:
        state.transition(SupervisorState.DONE)
        attempts = attempt.index + 1
        if isinstance(outcome, Success):
            message = f"succeeded on attempt {attempts}"
            logger.info(
                "Child process succeeded.",
                attempts=attempts,
                exit_code=outcome.exit_code,
                total_wait_ms=state.total_wait_ms,
            )
        else:
            message = str(outcome.error)
            logger.error(
                "Child process failed.",
                attempts=attempts,
                exit_code=outcome.exit_code,
                classification=str(reason),
                reason=outcome.reason,
                total_wait_ms=state.total_wait_ms,
            )
        return SupervisorResult(
            outcome=outcome,
            attempts=attempts,
            exit_code=outcome.exit_code,
            reason=reason,
            message=message,
            total_wait_ms=state.total_wait_ms,
        )

    def _interrupted_while_sleeping(
        self,
        state: RetryState,
        attempt: Attempt,
        received: signal.Signals,
    ) -> SupervisorResult:
        exit_code = signal_to_exit_code(received) or 1
        reason_text = f"interrupted by {received.name} while waiting to retry"
        outcome = FatalFailure(
            exit_code=exit_code,
            reason=reason_text,
            error=FatalProcessError(
                attempts=attempt.index + 1,
                exit_code=exit_code,
                reason=reason_text,
            ),
        )
        return self._finish(state, attempt, outcome, TerminalReason.INTERRUPTED)


def _exhausted(outcome: RetryableFailure, *, attempts: int) -> FatalFailure:
    return FatalFailure(
        exit_code=outcome.exit_code,
        reason=outcome.reason,
        error=FatalProcessError(
            attempts=attempts,
            exit_code=outcome.exit_code,
            reason=outcome.reason,
            exhausted=True,
        ),
    )


def run_supervisor(
    config: SupervisorConfig,
    *,
    replay: InputReplay | None = None,
) -> SupervisorResult:
    """Synchronous entry point used by the CLI."""

    replay = replay or InputReplay(max_bytes=config.max_stdin_bytes)
    # Read piped stdin before the event loop starts so Ctrl-C interrupts the read directly.
    replay.capture_once()
    return asyncio.run(Supervisor(config, replay=replay).run())

