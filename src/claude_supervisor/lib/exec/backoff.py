"""Exponential backoff with jitter and server-suggested overrides."""

from __future__ import annotations

import random

DEFAULT_JITTER_RATIO = 0.5


def base_delay(attempt_index: int, base_ms: int, cap_ms: int) -> int:
    """Return `min(base_ms * 2**attempt_index, cap_ms)` without overflowing."""

    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0.")
    if base_ms <= 0 or cap_ms <= 0:
        return max(min(base_ms, cap_ms), 0)
    # Once the shift outgrows the cap's bit length the product can only exceed it.
    if attempt_index >= cap_ms.bit_length():
        return cap_ms
    return min(base_ms << attempt_index, cap_ms)


class BackoffPlanner:
    """Compute the delay before the next attempt."""

    def __init__(
        self,
        *,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0 and 1.")
        self._jitter_ratio = jitter_ratio
        self._rng = rng or random.Random()

    def next_delay(
        self,
        attempt_index: int,
        base_ms: int,
        cap_ms: int,
        suggested_ms: int | None = None,
    ) -> int:
        """Delay in ms after the attempt at `attempt_index` (0 precedes the second attempt)."""

        if suggested_ms is not None:
            return max(min(suggested_ms, cap_ms), 0)

        computed = base_delay(attempt_index, base_ms, cap_ms)
        spread = computed * self._jitter_ratio
        jittered = computed + self._rng.uniform(-spread, spread)
        return int(min(max(jittered, 0), cap_ms))
