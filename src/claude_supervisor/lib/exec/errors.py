"""Error taxonomy and attempt outcome classification."""

from __future__ import annotations

from typing import TYPE_CHECKING

from claude_supervisor.lib.domain import (
    Attempt,
    FatalFailure,
    Outcome,
    RetryableFailure,
    Success,
)
from claude_supervisor.lib.exec.patterns import OutputClassifier, Retryable

if TYPE_CHECKING:
    from claude_supervisor.lib.config.settings import SupervisorConfig


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class ConfigurationError(SupervisorError, ValueError):
    """Invalid configuration detected before any attempt runs."""

    def __init__(self, message: str, *, exit_code: int = 2) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class InputTooLargeError(ConfigurationError):
    """Piped stdin does not fit in the replay buffer."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        super().__init__(
            f"Piped stdin exceeds the replay limit of {max_bytes} bytes; "
            "raise --max-stdin-bytes or pass the input as a file argument."
        )


class TransientApiError(SupervisorError):
    """A failed attempt that looks transient and may be retried."""

    def __init__(self, *, attempt: int, exit_code: int, reason: str) -> None:
        self.attempt = attempt
        self.exit_code = exit_code
        self.reason = reason
        super().__init__(f"attempt {attempt} failed (exit {exit_code}): {reason}")


class FatalProcessError(SupervisorError):
    """Terminal failure of the supervised child process."""

    def __init__(
        self,
        *,
        attempts: int,
        exit_code: int,
        reason: str,
        exhausted: bool = False,
    ) -> None:
        self.attempts = attempts
        self.exit_code = exit_code
        self.reason = reason
        self.exhausted = exhausted
        if exhausted:
            message = f"gave up after {attempts} attempts (exit {exit_code}): {reason}"
        else:
            message = f"non-retryable error on attempt {attempts} (exit {exit_code}): {reason}"
        super().__init__(message)


def _fatal(attempt: Attempt, reason: str) -> FatalFailure:
    return FatalFailure(
        exit_code=attempt.exit_code,
        reason=reason,
        error=FatalProcessError(
            attempts=attempt.index + 1,
            exit_code=attempt.exit_code,
            reason=reason,
        ),
    )


def _retryable(
    attempt: Attempt,
    reason: str,
    suggested_delay_ms: int | None = None,
) -> RetryableFailure:
    return RetryableFailure(
        exit_code=attempt.exit_code,
        reason=reason,
        suggested_delay_ms=suggested_delay_ms,
        error=TransientApiError(
            attempt=attempt.index + 1,
            exit_code=attempt.exit_code,
            reason=reason,
        ),
    )


def classify_attempt(
    attempt: Attempt,
    *,
    classifier: OutputClassifier,
    config: SupervisorConfig,
) -> Outcome:
    """Classify one finished attempt into exactly one outcome variant."""

    if attempt.spawn_error is not None:
        # Missing or non-executable binaries are configuration errors, never transient.
        return _fatal(attempt, attempt.spawn_error)

    if attempt.signal is not None and not config.retry_on_signal:
        return _fatal(attempt, f"terminated by {attempt.signal.name}")

    if attempt.exit_code == 0 and attempt.signal is None:
        return Success(exit_code=0)

    if attempt.received_signal is not None:
        return _fatal(attempt, f"interrupted by {attempt.received_signal.name}")

    if attempt.output is not None:
        verdict = classifier.classify(attempt.output.decode("utf-8", errors="replace"))
        if isinstance(verdict, Retryable):
            return _retryable(
                attempt,
                f"output matched /{verdict.pattern}/",
                verdict.suggested_delay_ms,
            )

    if attempt.signal is not None:
        return _retryable(attempt, f"terminated by {attempt.signal.name}")
    if attempt.exit_code in config.retry_exit_codes:
        return _retryable(attempt, f"exit code {attempt.exit_code} is retryable")
    if config.retry_on_any_error:
        return _retryable(attempt, "non-zero exit with retry-on-any-error")
    if attempt.output is None:
        # Passthrough attempts leave nothing to inspect; any failure counts as transient.
        return _retryable(attempt, "non-zero exit in interactive mode")

    return _fatal(attempt, "no retryable pattern matched")
