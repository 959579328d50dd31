"""
In-process fixed-window rate limiter.

Buckets live in one process. With several instances each has its own
counts, so the effective limit is per instance.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from budgetpods.services.storage.interface import RateLimiterInterface, RateLimitResult


@dataclass
class _Bucket:
    count: int
    reset_at_ms: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryRateLimiter(RateLimiterInterface):
    """
    Fixed window per key.

    The first request of a window opens it; requests past `max_requests`
    are refused until the window's reset time.
    """

    def __init__(self, clock_ms: Optional[Callable[[], int]] = None):
        self._buckets: dict[str, _Bucket] = {}
        self._clock_ms = clock_ms or _now_ms

    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        now = self._clock_ms()
        bucket = self._buckets.get(key)

        if bucket is None or now >= bucket.reset_at_ms:
            bucket = _Bucket(count=1, reset_at_ms=now + window_ms)
            self._buckets[key] = bucket
            return RateLimitResult(
                allowed=True,
                remaining=max_requests - 1,
                reset_at_ms=bucket.reset_at_ms,
            )

        if bucket.count >= max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_at_ms=bucket.reset_at_ms)

        bucket.count += 1
        return RateLimitResult(
            allowed=True,
            remaining=max(0, max_requests - bucket.count),
            reset_at_ms=bucket.reset_at_ms,
        )

    def reset(self) -> None:
        self._buckets.clear()
