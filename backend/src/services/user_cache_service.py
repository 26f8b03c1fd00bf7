"""
Cache-aside access to user records.

Reads go cache -> database -> cache. Writes go database -> commit -> invalidate, and
the invalidation is awaited before the caller gets a response, so the next read on
any instance observes the write.

Invalidation is deliberately broad: every write drops the collection key and the
whole query namespace, because any cached page might now include or exclude the
changed record. Re-evaluating each cached filter against the record is not
attempted. TTLs bound staleness when an invalidation is lost (Redis blip, race with
a concurrent read that loaded pre-commit data).
"""
import logging
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from core import cache_keys
from core.cache import CacheResult, read_through
from models.user import User
from schemas.user import (
    CacheStats,
    DeletedKeys,
    PaginationInfo,
    UserCreate,
    UserPage,
    UserQuery,
    UserResponse,
    UserUpdate,
)
from services import user_service
from services.exceptions import UserNotFoundError

if TYPE_CHECKING:
    from core.redis import RedisClient

logger = logging.getLogger(__name__)

_user_list = TypeAdapter(list[UserResponse])


def serialize_user(user: User) -> dict[str, Any]:
    """JSON-ready representation used both in responses and in the cache."""
    return UserResponse.model_validate(user).model_dump(mode="json", by_alias=True)


class UserCacheService:
    """
    Cache-aside accessor for user records.

    Constructed once per process and shared by all requests; holds no per-request
    state. The database session is passed to each call.
    """

    def __init__(
        self,
        redis_client: "RedisClient",
        ttl_user: int = 600,
        ttl_all_users: int = 300,
        ttl_query: int = 120,
    ) -> None:
        """Initialize with the shared Redis client and per-namespace TTLs (seconds)."""
        if min(ttl_user, ttl_all_users, ttl_query) <= 0:
            raise ValueError("Cache TTLs must be positive")
        self._redis = redis_client
        self.ttl_user = ttl_user
        self.ttl_all_users = ttl_all_users
        self.ttl_query = ttl_query

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_one(self, db: AsyncSession, user_id: UUID) -> CacheResult:
        """
        Get one user.

        Raises:
            UserNotFoundError: If the user does not exist. Misses are never cached.
        """

        async def load() -> dict[str, Any]:
            user = await user_service.get_user(db, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            return serialize_user(user)

        return await read_through(
            self._redis,
            cache_keys.user_key(user_id),
            self.ttl_user,
            load,
            validate=UserResponse.model_validate,
        )

    async def read_collection(self, db: AsyncSession) -> CacheResult:
        """Get every user, newest first."""

        async def load() -> list[dict[str, Any]]:
            return [serialize_user(u) for u in await user_service.list_users(db)]

        return await read_through(
            self._redis,
            cache_keys.all_users_key(),
            self.ttl_all_users,
            load,
            validate=_user_list.validate_python,
        )

    async def read_query(self, db: AsyncSession, query: UserQuery) -> CacheResult:
        """
        Get one page of a filtered, sorted listing.

        The cached envelope carries the page, pagination, filters and sorting so a
        hit rebuilds the response without touching the database.
        """

        async def load() -> dict[str, Any]:
            users, total = await user_service.search_users(db, query)
            pagination = PaginationInfo.compute(query.page, query.limit, total)
            return {
                "data": [serialize_user(u) for u in users],
                "pagination": pagination.model_dump(mode="json", by_alias=True),
                "filters": query.filters(),
                "sorting": query.sorting(),
            }

        return await read_through(
            self._redis,
            cache_keys.query_key(query.cache_params()),
            self.ttl_query,
            load,
            validate=UserPage.model_validate,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, db: AsyncSession, data: UserCreate) -> dict[str, Any]:
        """
        Create a user and invalidate listings.

        Raises:
            UserValidationError: If a required field is missing.
            DuplicateEmailError: If the email is taken.
        """
        user = await user_service.create_user(db, data)
        await db.commit()
        # A new user cannot be in any single-record entry, only in listings
        await self._invalidate_listings()
        return serialize_user(user)

    async def update(self, db: AsyncSession, user_id: UUID, data: UserUpdate) -> dict[str, Any]:
        """
        Partially update a user and invalidate everything that may hold it.

        Raises:
            UserNotFoundError: If the user does not exist.
            UserValidationError: If a required field is cleared.
            DuplicateEmailError: If the new email is taken.
        """
        user = await user_service.update_user(db, user_id, data)
        await db.commit()
        await self.invalidate_user(user_id)
        return serialize_user(user)

    async def delete(self, db: AsyncSession, user_id: UUID) -> None:
        """
        Delete a user and invalidate everything that may hold it.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        await user_service.delete_user(db, user_id)
        await db.commit()
        await self.invalidate_user(user_id)

    async def seed(self, db: AsyncSession, users: list[UserCreate]) -> int:
        """Bulk insert users and invalidate listings. Returns the number inserted."""
        created = await user_service.bulk_create_users(db, users)
        await db.commit()
        await self._invalidate_listings()
        return len(created)

    # ------------------------------------------------------------------
    # Invalidation and diagnostics
    # ------------------------------------------------------------------

    async def invalidate_user(self, user_id: UUID) -> None:
        """Drop the single-record key plus the collection and every query key."""
        await self._redis.delete(cache_keys.user_key(user_id))
        await self._invalidate_listings()
        logger.info("cache_invalidated", extra={"user_id": str(user_id)})

    async def _invalidate_listings(self) -> int:
        """Drop the collection key and the whole query namespace. Returns query keys found."""
        query_keys = await self._redis.keys(cache_keys.QUERY_KEY_PATTERN)
        await self._redis.delete(cache_keys.all_users_key(), *query_keys)
        logger.debug("cache_listings_invalidated query_keys=%s", len(query_keys))
        return len(query_keys)

    async def clear_all_cache(self) -> DeletedKeys:
        """Delete every user-cache key and report how many were removed per namespace."""
        user_keys = await self._redis.keys(cache_keys.USER_KEY_PATTERN)
        query_keys = await self._redis.keys(cache_keys.QUERY_KEY_PATTERN)
        all_users = 1 if await self._redis.exists(cache_keys.all_users_key()) else 0

        to_delete = [*user_keys, *query_keys]
        if all_users:
            to_delete.append(cache_keys.all_users_key())
        await self._redis.delete(*to_delete)

        deleted = DeletedKeys(
            user_keys=len(user_keys),
            query_keys=len(query_keys),
            all_users_key=all_users,
            total=len(to_delete),
        )
        logger.info("cache_cleared", extra=deleted.model_dump())
        return deleted

    async def cache_stats(self) -> CacheStats:
        """Read-only snapshot of cached users and Redis memory info."""
        user_keys = await self._redis.keys(cache_keys.USER_KEY_PATTERN)
        return CacheStats(
            total_user_cache_keys=len(user_keys),
            all_users_cached=await self._redis.exists(cache_keys.all_users_key()),
            user_cache_keys=user_keys,
            cache_info=await self._redis.info("memory"),
        )
