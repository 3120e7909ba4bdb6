from __future__ import annotations

from datetime import timedelta


def backoff_delay(attempt: int, base_delay_ms: int = 1000, max_delay_ms: int | None = None) -> timedelta:
    """Delay before the retry that follows failed attempt number *attempt*.

    ``base * 2**(attempt - 1)``: attempts 1, 2, 3 wait 1s, 2s, 4s with the
    default base.  *max_delay_ms* caps the delay when given.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay_ms = base_delay_ms * (2 ** (attempt - 1))
    if max_delay_ms is not None:
        delay_ms = min(delay_ms, max_delay_ms)
    return timedelta(milliseconds=delay_ms)
