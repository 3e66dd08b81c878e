# app/services/backoff.py
"""
Retry delay schedules.

Both functions are pure: no clock, no randomness. The job store uses
next_retry_delay to stamp next_retry_at, the executor uses rate_limit_delay
between attempts of a single provider call.
"""

from datetime import timedelta
from typing import Optional

# 1m, 5m, 15m, 1h, then 1h forever
RETRY_SCHEDULE_SECONDS = (60, 300, 900, 3600, 3600)
MAX_RETRY_DELAY = timedelta(seconds=max(RETRY_SCHEDULE_SECONDS))

RATE_LIMIT_BASE_SECONDS = 0.5
RATE_LIMIT_MAX_SECONDS = 30.0


def next_retry_delay(retry_count: int) -> timedelta:
    """Delay before the next attempt, given how many attempts already failed before this one."""
    if retry_count < 0:
        retry_count = 0
    if retry_count >= len(RETRY_SCHEDULE_SECONDS):
        return MAX_RETRY_DELAY
    return timedelta(seconds=RETRY_SCHEDULE_SECONDS[retry_count])


def rate_limit_delay(attempt: int, retry_after: Optional[float] = None) -> float:
    """
    Seconds to wait before re-issuing a rate-limited provider call.

    Doubles from RATE_LIMIT_BASE_SECONDS per attempt; a provider Retry-After
    hint wins when it is longer. Always capped at RATE_LIMIT_MAX_SECONDS.
    """
    if attempt < 0:
        attempt = 0
    delay = RATE_LIMIT_BASE_SECONDS * (2 ** min(attempt, 16))
    if retry_after is not None and retry_after > delay:
        delay = retry_after
    return min(delay, RATE_LIMIT_MAX_SECONDS)
