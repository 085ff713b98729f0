"""Attempt pipeline primitives."""

from claude_supervisor.lib.exec.backoff import BackoffPlanner, base_delay
from claude_supervisor.lib.exec.errors import (
    ConfigurationError,
    FatalProcessError,
    InputTooLargeError,
    SupervisorError,
    TransientApiError,
    classify_attempt,
)
from claude_supervisor.lib.exec.patterns import (
    DEFAULT_RETRY_PATTERNS,
    NotRetryable,
    OutputClassifier,
    PatternMatcher,
    Retryable,
    RetryVerdict,
)
from claude_supervisor.lib.exec.replay import InputReplay
from claude_supervisor.lib.exec.signals import decode_return_code, signal_to_exit_code
from claude_supervisor.lib.exec.spawn import AttemptRunner
from claude_supervisor.lib.exec.tee import CaptureMode, OutputTee, PassthroughMode, TeeMode

__all__ = [
    "DEFAULT_RETRY_PATTERNS",
    "AttemptRunner",
    "BackoffPlanner",
    "CaptureMode",
    "ConfigurationError",
    "FatalProcessError",
    "InputReplay",
    "InputTooLargeError",
    "NotRetryable",
    "OutputClassifier",
    "OutputTee",
    "PassthroughMode",
    "PatternMatcher",
    "RetryVerdict",
    "Retryable",
    "SupervisorError",
    "TeeMode",
    "TransientApiError",
    "base_delay",
    "classify_attempt",
    "decode_return_code",
    "signal_to_exit_code",
]
