"""Regex classification of child output into retry verdicts."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final, Protocol

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_PATTERNS: Final[tuple[str, ...]] = (
    r"overloaded",
    r"HTTP\s*500",
    r"\b5\d\d\s*(Server\s*Error|Error)\b",
    r"status\s*code\s*=\s*5\d\d",
    r"Too\s*Many\s*Requests",
    r"\b429\b",
    r"ECONNRESET",
    r"ETIMEDOUT",
    r"Gateway\s*Timeout",
    r"upstream\s*timeout",
    r"temporary\s*failure",
    r"(fetch|network)\s*error",
    r"socket\s*hang\s*up",
)

_RETRY_AFTER_HEADER = re.compile(r"Retry-After:\s*(\d+)\b", re.IGNORECASE)
_RETRY_IN_PHRASE = re.compile(
    r"\bretry(?:ing)?\s+(?:in|after)\s+(\d+(?:\.\d+)?)\s*"
    r"(ms|milliseconds?|s|secs?|seconds?|m|mins?|minutes?)\b",
    re.IGNORECASE,
)
_UNIT_MULTIPLIERS_MS: Final[dict[str, int]] = {
    "ms": 1,
    "millisecond": 1,
    "milliseconds": 1,
    "s": 1000,
    "sec": 1000,
    "secs": 1000,
    "second": 1000,
    "seconds": 1000,
    "m": 60_000,
    "min": 60_000,
    "mins": 60_000,
    "minute": 60_000,
    "minutes": 60_000,
}


@dataclass(frozen=True, slots=True)
class NotRetryable:
    pass


@dataclass(frozen=True, slots=True)
class Retryable:
    pattern: str
    suggested_delay_ms: int | None = None


RetryVerdict = NotRetryable | Retryable


class OutputClassifier(Protocol):
    """Decides whether accumulated child output indicates a transient failure."""

    def classify(self, text: str) -> RetryVerdict: ...


def split_patterns(raw: str | None) -> tuple[str, ...]:
    """Split a pipe-separated pattern list, dropping blank entries."""

    if raw is None:
        return ()
    return tuple(piece.strip() for piece in raw.split("|") if piece.strip())


def find_retry_after_ms(text: str) -> int | None:
    """Extract a suggested retry delay in milliseconds from error text."""

    header = _RETRY_AFTER_HEADER.search(text)
    if header is not None:
        return int(header.group(1)) * 1000

    phrase = _RETRY_IN_PHRASE.search(text)
    if phrase is None:
        return None
    unit = phrase.group(2).lower()
    return int(float(phrase.group(1)) * _UNIT_MULTIPLIERS_MS[unit])


def _compile(pattern: str, flags: int) -> re.Pattern[str] | None:
    if not pattern.strip():
        logger.warning("Skipping empty retry pattern.")
        return None
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        logger.warning("Skipping invalid retry pattern.", pattern=pattern, error=str(exc))
        return None


class PatternMatcher:
    """Compiled retry pattern set.

    The built-in patterns match case-insensitively. Extra patterns are
    compiled as given, so callers can opt into `(?i)` themselves.
    """

    def __init__(
        self,
        extra_patterns: Iterable[str] = (),
        *,
        include_defaults: bool = True,
    ) -> None:
        compiled: list[re.Pattern[str]] = []
        if include_defaults:
            for pattern in DEFAULT_RETRY_PATTERNS:
                regex = _compile(pattern, re.IGNORECASE)
                if regex is not None:
                    compiled.append(regex)
        for pattern in extra_patterns:
            regex = _compile(pattern, 0)
            if regex is not None:
                compiled.append(regex)
        self._patterns: tuple[re.Pattern[str], ...] = tuple(compiled)

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(regex.pattern for regex in self._patterns)

    def classify(self, text: str) -> RetryVerdict:
        for regex in self._patterns:
            if regex.search(text):
                return Retryable(pattern=regex.pattern, suggested_delay_ms=find_retry_after_ms(text))
        return NotRetryable()
