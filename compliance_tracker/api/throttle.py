"""
Request throttle with a sliding window per key.

Every route that reaches the lifecycle engine passes through here first;
the engine itself never throttles. The limiter is behind a small protocol
so a shared-store implementation can replace the in-memory one.
"""
import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional, Protocol

from compliance_tracker.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime

    def headers(self, now: Optional[datetime] = None) -> Dict[str, str]:
        now = now or utcnow()
        reset_in = max(0, int((self.reset_at - now).total_seconds() + 0.999))
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(reset_in),
        }


class RateLimiter(Protocol):
    def check_and_consume(
        self, key: str, limit: int, window_seconds: int, now: Optional[datetime] = None
    ) -> RateLimitResult:
        ...


class SlidingWindowRateLimiter:
    """
    Thread-safe in-memory limiter.

    Counts resets on restart and are not shared across instances.
    """

    def __init__(self):
        self.windows: Dict[str, Deque[datetime]] = defaultdict(deque)
        self.lock = threading.Lock()

    def check_and_consume(
        self, key: str, limit: int, window_seconds: int, now: Optional[datetime] = None
    ) -> RateLimitResult:
        now = now or utcnow()
        window = timedelta(seconds=window_seconds)
        cutoff = now - window

        with self.lock:
            stamps = self.windows[key]
            while stamps and stamps[0] <= cutoff:
                stamps.popleft()

            if len(stamps) < limit:
                stamps.append(now)
                return RateLimitResult(
                    allowed=True,
                    remaining=limit - len(stamps),
                    limit=limit,
                    reset_at=stamps[0] + window,
                )

            logger.warning("Rate limit exceeded for %s (%d per %ss)", key, limit, window_seconds)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=limit,
                reset_at=stamps[0] + window,
            )

    def reset_key(self, key: str) -> None:
        with self.lock:
            self.windows.pop(key, None)
