"""
Rate Limiter — Per-Client Fixed Window Admission

In-memory fixed-window counter keyed by client identity (network address).
Default: 10 requests per 60-second window.

Not a sliding window: a client can burst up to 2x the limit across a
window boundary. Expired buckets are swept lazily on every admission
check, so the bucket map only ever holds identities seen in the
current window.

Usage:
    limiter = FixedWindowRateLimiter(limit=10, window_seconds=60)
    decision = limiter.admit(client_ip)
    if not decision.allowed:
        ...  # 429 with decision.headers()
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class Bucket:
    """Counter for one identity's active window."""
    count: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def headers(self) -> dict[str, str]:
        """Standard rate-limit response headers. Reset is epoch milliseconds."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
        }


class FixedWindowRateLimiter:
    """Thread-safe fixed-window limiter. One instance per process."""

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.enabled = enabled
        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()

    def admit(self, identity: str) -> RateLimitDecision:
        """Count one request for ``identity`` and decide whether it may proceed."""
        now = self._clock()
        if not self.enabled:
            return RateLimitDecision(True, self.limit, self.limit, now + self.window_seconds)

        with self._lock:
            self._sweep(now)

            bucket = self._buckets.get(identity)
            if bucket is None:
                # First request in a fresh window
                bucket = Bucket(count=1, reset_at=now + self.window_seconds)
                self._buckets[identity] = bucket
                return RateLimitDecision(True, self.limit, self.limit - 1, bucket.reset_at)

            if bucket.count >= self.limit:
                # Rejected requests do not extend or advance the window
                return RateLimitDecision(False, self.limit, 0, bucket.reset_at)

            bucket.count += 1
            return RateLimitDecision(
                True, self.limit, self.limit - bucket.count, bucket.reset_at,
            )

    def usage(self, identity: str) -> dict:
        """Current window usage for an identity."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None or bucket.reset_at <= now:
                return {"count": 0, "remaining": self.limit, "reset_at": None}
            return {
                "count": bucket.count,
                "remaining": max(self.limit - bucket.count, 0),
                "reset_at": bucket.reset_at,
            }

    @property
    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._buckets)

    def reset(self, identity: Optional[str] = None) -> None:
        """Drop one identity's bucket, or all of them."""
        with self._lock:
            if identity is None:
                self._buckets.clear()
            else:
                self._buckets.pop(identity, None)

    def _sweep(self, now: float) -> None:
        # Caller holds the lock
        expired = [k for k, b in self._buckets.items() if b.reset_at <= now]
        for k in expired:
            del self._buckets[k]
