import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import MovingWindowRateLimiter


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    retry_after: int


class SlidingWindowRateLimiter:
    """
    Per-key moving window: at most `max_requests` hits in any `window_ms`
    span. Expired hits are evicted by the storage backend.
    """

    def __init__(self, window_ms: int = 900000, max_requests: int = 100,
                 storage: Optional[Storage] = None):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.item = RateLimitItemPerSecond(max_requests, max(1, window_ms // 1000), namespace="paysim")
        self.storage = storage or MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self.storage)

    async def hit(self, key: str) -> RateDecision:
        allowed = await self._limiter.hit(self.item, key)
        stats = await self._limiter.get_window_stats(self.item, key)
        remaining = max(0, stats.remaining)
        if allowed:
            return RateDecision(True, self.max_requests - remaining, self.max_requests, remaining, 0)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        return RateDecision(False, self.max_requests + 1, self.max_requests, 0, retry_after)

