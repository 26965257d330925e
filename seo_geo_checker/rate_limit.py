"""
Sliding-window rate limiting keyed by client identity.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from seo_geo_checker.config import RateLimitPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_seconds)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


class RateLimiter:
    """
    Counts requests per key inside a sliding window.

    Unlike a throttle, ``hit`` never waits: it reports whether the request
    fits in the budget and records it only when it does.
    """

    def __init__(self, policy: RateLimitPolicy, clock: Callable[[], datetime] = datetime.now):
        self.policy = policy
        self.max_requests = policy.max_requests
        self.window = timedelta(seconds=policy.window_seconds)
        self.clock = clock
        self.requests: Dict[str, List[datetime]] = {}
        self.lock = asyncio.Lock()
        self.last_sweep = clock()

    def _reset_in(self, timestamps: List[datetime], now: datetime) -> int:
        if not timestamps:
            return self.policy.window_seconds
        return max(0, math.ceil((timestamps[0] + self.window - now).total_seconds()))

    def _sweep(self, now: datetime) -> None:
        """Forget keys whose requests have all left the window."""
        stale = [
            key for key, timestamps in self.requests.items()
            if not timestamps or now - timestamps[-1] >= self.window
        ]
        for key in stale:
            del self.requests[key]
        self.last_sweep = now
        if stale:
            logger.debug(f"Dropped {len(stale)} idle rate limit key(s)")

    async def hit(self, key: str) -> RateLimitDecision:
        async with self.lock:
            now = self.clock()
            if now - self.last_sweep >= self.window:
                self._sweep(now)
            # Remove old requests
            timestamps = [t for t in self.requests.get(key, []) if now - t < self.window]

            if len(timestamps) >= self.max_requests:
                self.requests[key] = timestamps
                reset = self._reset_in(timestamps, now)
                logger.info(f"Rate limit hit for {key}, resets in {reset} seconds.")
                return RateLimitDecision(False, self.max_requests, 0, reset)

            timestamps.append(now)
            self.requests[key] = timestamps
            return RateLimitDecision(
                True,
                self.max_requests,
                self.max_requests - len(timestamps),
                self._reset_in(timestamps, now),
            )

    async def reset(self, key: str = None) -> None:
        async with self.lock:
            if key is None:
                self.requests.clear()
            else:
                self.requests.pop(key, None)
