"""Redis client with connection pooling and graceful fallback."""
import logging
from typing import Any

from fastapi import Request
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import NoScriptError, RedisError

logger = logging.getLogger(__name__)

# Lua script for fixed window counting.
# Atomic: increments the counter and sets the expiry only on the first hit of the window,
# so every hit in a window shares one expiry anchored at the first hit.
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local window_ms = tonumber(ARGV[1])

local count = redis.call('INCR', key)
if count == 1 then
    redis.call('PEXPIRE', key, window_ms)
end
local ttl = redis.call('PTTL', key)
if ttl < 0 then
    -- Counter lost its expiry (e.g. written by an older client): re-anchor it
    redis.call('PEXPIRE', key, window_ms)
    ttl = window_ms
end

return {count, ttl}
"""

# Lua script for undoing a hit. Never creates a key and never leaves a counter at zero
# or below, so a counter without an expiry cannot be produced.
DECREMENT_SCRIPT = """
local key = KEYS[1]

if redis.call('EXISTS', key) == 0 then
    return 0
end
local count = redis.call('DECR', key)
if count <= 0 then
    redis.call('DEL', key)
    return 0
end
return count
"""

SCAN_BATCH_SIZE = 100


class RedisClient:
    """Async Redis client with connection pooling and graceful fallback."""

    def __init__(
        self,
        url: str,
        enabled: bool = True,
        pool_size: int = 20,
        socket_timeout: float | None = 2.0,
    ) -> None:
        self._url = url
        self._enabled = enabled
        self._pool_size = pool_size
        self._socket_timeout = socket_timeout
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None
        self._fixed_window_sha: str | None = None
        self._decrement_sha: str | None = None

    async def connect(self) -> None:
        """Initialize connection pool and load Lua scripts."""
        if not self._enabled:
            logger.info("Redis disabled by configuration")
            return
        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._pool_size,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
            self._client = Redis(connection_pool=self._pool)
            # Verify connection
            await self._client.ping()
            await self._load_scripts()
            logger.info("Redis connected successfully")
        except RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            if self._pool is not None:
                await self._pool.disconnect()
            self._client = None
            self._pool = None

    async def attach(self, client: Redis) -> None:
        """
        Use an already constructed redis.asyncio client instead of building a pool.

        Lets several components share one client, and lets tests plug in an
        in-process Redis implementation.
        """
        self._client = client
        await self._load_scripts()

    async def _load_scripts(self) -> None:
        """Load Lua scripts and store their SHAs for evalsha calls."""
        if not self._client:
            return
        try:
            self._fixed_window_sha = await self._client.script_load(FIXED_WINDOW_SCRIPT)
            self._decrement_sha = await self._client.script_load(DECREMENT_SCRIPT)
            logger.info("Redis Lua scripts loaded")
        except RedisError as e:
            logger.warning("Failed to load Lua scripts: %s", e)

    async def close(self) -> None:
        """Close connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._pool = None
            logger.info("Redis connection closed")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._client is not None

    @property
    def fixed_window_sha(self) -> str | None:
        """Get SHA for fixed window script."""
        return self._fixed_window_sha

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def get(self, key: str) -> bytes | None:
        """Get value, returns None if Redis unavailable."""
        if not self._client:
            return None
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.warning("Redis GET failed: %s", e)
            return None

    async def setex(self, key: str, seconds: int, value: str | bytes) -> bool:
        """Set value with expiry, returns False if Redis unavailable."""
        if seconds <= 0:
            raise ValueError("Redis entries must be written with a positive expiry")
        if not self._client:
            return False
        try:
            await self._client.setex(key, seconds, value)
            return True
        except RedisError as e:
            logger.warning("Redis SETEX failed: %s", e)
            return False

    async def delete(self, *keys: str) -> bool:
        """Delete key(s), returns False if Redis unavailable."""
        if not keys:
            return True
        if not self._client:
            return False
        try:
            await self._client.delete(*keys)
            return True
        except RedisError as e:
            logger.warning("Redis DELETE failed: %s", e)
            return False

    async def keys(self, pattern: str) -> list[str]:
        """
        List keys matching a glob pattern, returns [] if Redis unavailable.

        Uses incremental SCAN rather than KEYS so a large keyspace never blocks the server.
        """
        if not self._client:
            return []
        try:
            found = [
                key.decode() if isinstance(key, bytes) else key
                async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)
            ]
        except RedisError as e:
            logger.warning("Redis SCAN failed: %s", e)
            return []
        # SCAN may return a key more than once
        return sorted(set(found))

    async def exists(self, key: str) -> bool:
        """Check whether a key exists, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            return await self._client.exists(key) > 0
        except RedisError as e:
            logger.warning("Redis EXISTS failed: %s", e)
            return False

    async def info(self, section: str | None = None) -> dict[str, Any]:
        """Get server INFO (optionally one section), returns {} if Redis unavailable."""
        if not self._client:
            return {}
        try:
            return await self._client.info(section)
        except RedisError as e:
            logger.warning("Redis INFO failed: %s", e)
            return {}

    async def _evalsha_with_reload(self, script: str, *args: Any) -> Any:
        """
        Run one of the loaded scripts against a single key.

        Handles NOSCRIPT errors (Redis restarted or flushed its script cache) by
        reloading scripts and retrying once. Returns None when Redis is unavailable.
        """
        sha = self._sha_for(script)
        # SHA is None when Redis was unavailable at startup or a reload failed: fail open.
        if not self._client or sha is None:
            return None

        try:
            return await self._client.evalsha(sha, 1, *args)
        except NoScriptError:
            logger.warning("redis_script_reload", extra={"script": script})
            await self._load_scripts()
            sha = self._sha_for(script)
            if sha is None:
                return None
            try:
                return await self._client.evalsha(sha, 1, *args)
            except RedisError as e:
                logger.warning("Redis %s retry failed: %s", script, e)
                return None
        except RedisError as e:
            logger.warning("Redis %s failed: %s", script, e)
            return None

    def _sha_for(self, script: str) -> str | None:
        if script == "fixed_window":
            return self._fixed_window_sha
        if script == "decrement":
            return self._decrement_sha
        raise ValueError(f"Unknown script: {script}")

    async def eval_fixed_window(self, key: str, window_ms: int) -> list[int] | None:
        """
        Count one hit in the fixed window stored at `key`.

        Args:
            key: Redis key for this counter
            window_ms: Window length in milliseconds, applied on the first hit only

        Returns:
            [total_hits, remaining_ttl_ms] or None if Redis unavailable
        """
        result = await self._evalsha_with_reload("fixed_window", key, window_ms)
        if result is None:
            return None
        return [int(result[0]), int(result[1])]

    async def eval_decrement(self, key: str) -> int | None:
        """Remove one hit from the counter at `key`; returns the new count or None."""
        result = await self._evalsha_with_reload("decrement", key)
        if result is None:
            return None
        return int(result)


def get_redis_client(request: Request) -> RedisClient:
    """Process-wide Redis client, built during app startup."""
    return request.app.state.redis_client
