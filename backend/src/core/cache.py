"""Read-through caching combinator shared by every cached read."""
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from core.redis import RedisClient

logger = logging.getLogger(__name__)


class CacheSource(StrEnum):
    """Where a read was fulfilled from."""

    CACHE = "cache"
    DATABASE = "database"


@dataclass
class CacheResult:
    """A JSON-ready value plus the layer that produced it."""

    data: Any
    source: CacheSource


async def read_through(
    cache: "RedisClient",
    key: str,
    ttl: int,
    loader: Callable[[], Awaitable[Any]],
    validate: Callable[[Any], object] | None = None,
) -> CacheResult:
    """
    Serve `key` from the cache, falling back to `loader` and populating the cache.

    `loader` must return a JSON-serializable value. To report a missing record it
    raises; the exception propagates and nothing is cached, so repeated lookups of
    a missing record always reach the database.

    `validate` checks the shape of a cached value and raises ValueError (pydantic's
    ValidationError included) or TypeError when it does not fit, e.g. an entry
    written before a schema change.

    Cache failures never propagate: an unreachable cache, an undecodable entry, or
    an entry rejected by `validate` is treated as a miss, and a failed write is
    logged and ignored.
    """
    cached = await cache.get(key)
    if cached is not None:
        try:
            data = json.loads(cached)
            if validate is not None:
                validate(data)
        except (TypeError, ValueError):
            logger.warning("cache_corrupt_entry", extra={"key": key})
            await cache.delete(key)
        else:
            logger.debug("cache_hit key=%s", key)
            return CacheResult(data=data, source=CacheSource.CACHE)

    logger.debug("cache_miss key=%s", key)
    data = await loader()

    stored = await cache.setex(key, ttl, json.dumps(data))
    if stored:
        logger.debug("cache_set key=%s ttl=%s", key, ttl)
    return CacheResult(data=data, source=CacheSource.DATABASE)
