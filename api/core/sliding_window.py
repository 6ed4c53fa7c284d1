"""
Per-key point budget limiter.

Thin async wrapper over the `limits` library (the engine behind slowapi)
that exposes consume/reward/get/delete on a single budget of N points per
duration. A key's window opens at its first consumption and closes
`duration` seconds later.
"""

import logging
import time

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter

from models.rate_limit import LimiterResponse

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """In-process point budget keyed by arbitrary string."""

    def __init__(self, points: int, duration: int = 60, block_duration: int = 0):
        if points < 1:
            raise ValueError("points must be at least 1")
        if duration < 1:
            raise ValueError("duration must be at least 1 second")
        if block_duration != 0:
            raise ValueError("block_duration other than 0 is not supported")

        self.points = points
        self.duration = duration
        self.block_duration = block_duration
        self._item = RateLimitItemPerSecond(points, duration)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def _storage_key(self, key: str) -> str:
        return self._item.key_for(key)

    async def _state(self, key: str) -> LimiterResponse:
        storage_key = self._storage_key(key)
        consumed = await self._storage.get(storage_key)
        reset_time = await self._storage.get_expiry(storage_key)
        ms_before_next = max(0, int((reset_time - time.time()) * 1000)) if consumed else 0
        return LimiterResponse(
            allowed=consumed <= self.points,
            remaining_points=max(0, self.points - consumed),
            ms_before_next=ms_before_next,
            consumed_points=consumed,
        )

    async def consume(self, key: str, points: int = 1) -> LimiterResponse:
        """Consume points for a key. Over-budget consumption is reported as allowed=False."""
        allowed = await self._strategy.hit(self._item, key, cost=points)
        state = await self._state(key)
        if not allowed:
            return LimiterResponse(
                allowed=False,
                remaining_points=0,
                ms_before_next=state.ms_before_next,
                consumed_points=state.consumed_points,
            )
        return state

    async def reward(self, key: str, points: int = 1) -> None:
        """Give points back to a key within its current window."""
        await self._storage.decr(self._storage_key(key), points)

    async def get(self, key: str) -> LimiterResponse | None:
        """Return the key's state without consuming, or None if nothing was consumed."""
        state = await self._state(key)
        if state.consumed_points == 0:
            return None
        return state

    async def delete(self, key: str) -> bool:
        """Clear a key's counter. Returns True if the key had recorded consumption."""
        existed = await self.get(key) is not None
        await self._strategy.clear(self._item, key)
        return existed


def create_sliding_window_limiter(points: int, duration: int, block_duration: int) -> SlidingWindowLimiter:
    """Default limiter factory used by the rate limit service."""
    return SlidingWindowLimiter(points=points, duration=duration, block_duration=block_duration)
