"""
Counter storage for rate limiting.

The store only counts; deciding whether a count is over a limit is the rate
limiter's job. Counters live in the same Redis as the user cache under the
`rate_limit:` prefix, so every API instance shares them.
"""
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from core.redis import RedisClient

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "rate_limit:"


@dataclass
class IncrementResult:
    """Hits counted so far in the current window and when the window ends."""

    total_hits: int
    reset_time: float  # Unix timestamp (seconds) when the window ends


class RateLimitStore(Protocol):
    """Interface for fixed-window counter stores."""

    async def increment(self, key: str, window_ms: int) -> IncrementResult:
        """Count one hit and return the window state."""
        ...

    async def get(self, key: str) -> int:
        """Current hit count (0 when no window is open)."""
        ...

    async def decrement(self, key: str) -> None:
        """Undo one hit."""
        ...

    async def reset(self, key: str) -> None:
        """Forget the client's window entirely."""
        ...


class RedisRateLimitStore:
    """
    Fixed-window counters in Redis.

    The first hit of a window creates the counter and sets its expiry to the window
    length; later hits only increment, so the window ends `window_ms` after the first
    hit regardless of traffic. Counting is a single Lua script, so concurrent
    instances never race between INCR and PEXPIRE.

    Store failures fail open: the pipeline keeps serving requests rather than
    blocking on an unavailable limiter.
    """

    def __init__(self, redis_client: "RedisClient", prefix: str = RATE_LIMIT_KEY_PREFIX) -> None:
        """Initialize with the shared Redis client."""
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def increment(self, key: str, window_ms: int) -> IncrementResult:
        """Count one hit. Falls back to a fresh single-hit window if Redis fails."""
        now = time.time()
        result = await self._redis.eval_fixed_window(self._key(key), window_ms)
        if result is None:
            logger.warning("redis_unavailable", extra={"operation": "rate_limit_increment"})
            return IncrementResult(total_hits=1, reset_time=now + window_ms / 1000)

        total_hits, ttl_ms = result
        return IncrementResult(total_hits=total_hits, reset_time=now + ttl_ms / 1000)

    async def get(self, key: str) -> int:
        """Current hit count, 0 if no window is open or Redis is unavailable."""
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("rate_limit_corrupt_counter", extra={"key": key})
            return 0

    async def decrement(self, key: str) -> None:
        """Undo one hit (e.g. to not count a request that was rejected downstream)."""
        await self._redis.eval_decrement(self._key(key))

    async def reset(self, key: str) -> None:
        """Delete the client's counter."""
        await self._redis.delete(self._key(key))
