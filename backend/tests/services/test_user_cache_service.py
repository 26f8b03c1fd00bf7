"""
Tests for the cache-aside user accessor.

These run against the real RedisClient wrapper (in-process Redis) and SQLite, and
check what ends up in Redis after each operation.
"""
from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest
from fakeredis import FakeAsyncRedis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from uuid6 import uuid7

from core import cache_keys
from core.cache import CacheSource
from core.redis import RedisClient
from schemas.user import UserCreate, UserQuery, UserUpdate
from services.exceptions import UserNotFoundError
from services.user_cache_service import UserCacheService


async def create(cache_service: UserCacheService, db: AsyncSession, **overrides: object) -> dict:
    fields = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}
    fields.update(overrides)
    return await cache_service.create(db, UserCreate(**fields))


async def query_keys(fake_redis: FakeAsyncRedis) -> list[bytes]:
    return [key async for key in fake_redis.scan_iter(match="users:query:*")]


class TestConstruction:
    """TTL configuration."""

    def test__non_positive_ttl_rejected(self, redis_client: RedisClient) -> None:
        with pytest.raises(ValueError, match="positive"):
            UserCacheService(redis_client, ttl_query=0)


class TestReads:
    """Read-through behavior per namespace."""

    async def test__read_one__database_then_cache(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        user = await create(cache_service, db_session)

        first = await cache_service.read_one(db_session, UUID(user["id"]))
        second = await cache_service.read_one(db_session, UUID(user["id"]))

        assert first.source == CacheSource.DATABASE
        assert second.source == CacheSource.CACHE
        assert first.data == second.data
        assert second.data["firstName"] == "Ada"
        ttl = await fake_redis.ttl(cache_keys.user_key(UUID(user["id"])))
        assert 0 < ttl <= 600

    async def test__read_one__missing_user_not_cached(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        missing = uuid7()

        with pytest.raises(UserNotFoundError):
            await cache_service.read_one(db_session, missing)

        assert await fake_redis.exists(cache_keys.user_key(missing)) == 0

    async def test__read_collection__cached_with_ttl(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        await create(cache_service, db_session)
        await create(cache_service, db_session, first_name="Alan", email="alan@example.com")

        first = await cache_service.read_collection(db_session)
        second = await cache_service.read_collection(db_session)

        assert first.source == CacheSource.DATABASE
        assert second.source == CacheSource.CACHE
        assert [u["firstName"] for u in second.data] == ["Alan", "Ada"]
        assert 0 < await fake_redis.ttl("users:all") <= 300

    async def test__read_query__envelope_and_caching(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        await create(cache_service, db_session, city="London")
        await create(cache_service, db_session, first_name="Alan", email="alan@example.com")
        query = UserQuery.from_params(city="London", limit="5")

        first = await cache_service.read_query(db_session, query)
        second = await cache_service.read_query(db_session, query)

        assert first.source == CacheSource.DATABASE
        assert second.source == CacheSource.CACHE
        assert second.data == first.data
        assert [u["firstName"] for u in first.data["data"]] == ["Ada"]
        assert first.data["pagination"]["totalUsers"] == 1
        assert first.data["pagination"]["usersPerPage"] == 5
        assert first.data["filters"] == {"city": "London"}
        assert first.data["sorting"] == {"sortBy": "createdAt", "sortOrder": "desc"}
        key = cache_keys.query_key(query.cache_params())
        assert 0 < await fake_redis.ttl(key) <= 120

    async def test__read_query__equivalent_params_share_entry(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
    ) -> None:
        await create(cache_service, db_session, city="London")
        await cache_service.read_query(db_session, UserQuery.from_params(city="London"))

        result = await cache_service.read_query(
            db_session, UserQuery.from_params(city=" London ", page="1", search=""),
        )

        assert result.source == CacheSource.CACHE


class TestWritesInvalidate:
    """Every mutation leaves no stale listing or record behind."""

    async def _warm(
        self, cache_service: UserCacheService, db: AsyncSession, user_id: UUID,
    ) -> None:
        await cache_service.read_one(db, user_id)
        await cache_service.read_collection(db)
        await cache_service.read_query(db, UserQuery.from_params())
        await cache_service.read_query(db, UserQuery.from_params(search="ada"))

    async def test__create__drops_listings(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        user = await create(cache_service, db_session)
        await self._warm(cache_service, db_session, UUID(user["id"]))
        assert len(await query_keys(fake_redis)) == 2

        await create(cache_service, db_session, first_name="Alan", email="alan@example.com")

        assert await query_keys(fake_redis) == []
        assert await fake_redis.exists("users:all") == 0
        listing = await cache_service.read_collection(db_session)
        assert listing.source == CacheSource.DATABASE
        assert len(listing.data) == 2

    async def test__update__drops_record_and_listings(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        user = await create(cache_service, db_session)
        await self._warm(cache_service, db_session, UUID(user["id"]))

        updated = await cache_service.update(
            db_session, UUID(user["id"]), UserUpdate.model_validate({"city": "Paris"}),
        )

        assert updated["city"] == "Paris"
        assert await fake_redis.exists(cache_keys.user_key(UUID(user["id"]))) == 0
        assert await fake_redis.exists("users:all") == 0
        assert await query_keys(fake_redis) == []
        fresh = await cache_service.read_one(db_session, UUID(user["id"]))
        assert fresh.source == CacheSource.DATABASE
        assert fresh.data["city"] == "Paris"

    async def test__delete__drops_record_and_listings(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        user = await create(cache_service, db_session)
        await self._warm(cache_service, db_session, UUID(user["id"]))

        await cache_service.delete(db_session, UUID(user["id"]))

        assert await fake_redis.exists(cache_keys.user_key(UUID(user["id"]))) == 0
        assert await query_keys(fake_redis) == []
        with pytest.raises(UserNotFoundError):
            await cache_service.read_one(db_session, UUID(user["id"]))

    async def test__failed_update__leaves_cache_untouched(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        """Nothing is invalidated when the database rejects the write."""
        user = await create(cache_service, db_session)
        await self._warm(cache_service, db_session, UUID(user["id"]))

        with pytest.raises(UserNotFoundError):
            await cache_service.update(
                db_session, uuid7(), UserUpdate.model_validate({"city": "Paris"}),
            )

        assert await fake_redis.exists(cache_keys.user_key(UUID(user["id"]))) == 1
        assert len(await query_keys(fake_redis)) == 2

    async def test__write_succeeds_when_redis_down(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        redis_client: RedisClient,
    ) -> None:
        """Invalidation failures are absorbed; the database write stands."""
        with (
            patch.object(
                redis_client._client, "delete", new_callable=AsyncMock,
                side_effect=RedisError("down"),
            ),
            patch.object(
                redis_client._client, "scan_iter",
                side_effect=RedisError("down"),
            ),
        ):
            user = await create(cache_service, db_session)

        result = await cache_service.read_one(db_session, UUID(user["id"]))
        assert result.data["email"] == "ada@example.com"

    async def test__seed__drops_listings(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        await cache_service.read_collection(db_session)
        await cache_service.read_query(db_session, UserQuery.from_params())

        created = await cache_service.seed(
            db_session,
            [
                UserCreate(first_name="A", last_name="One", email="a@example.com"),
                UserCreate(first_name="B", last_name="Two", email="b@example.com"),
            ],
        )

        assert created == 2
        assert await fake_redis.exists("users:all") == 0
        assert await query_keys(fake_redis) == []


class TestDiagnostics:
    """Cache clear and stats."""

    async def test__clear_all_cache__reports_per_namespace_counts(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
        fake_redis: FakeAsyncRedis,
    ) -> None:
        ada = await create(cache_service, db_session)
        alan = await create(cache_service, db_session, first_name="Alan", email="alan@example.com")
        await cache_service.read_one(db_session, UUID(ada["id"]))
        await cache_service.read_one(db_session, UUID(alan["id"]))
        await cache_service.read_collection(db_session)
        await cache_service.read_query(db_session, UserQuery.from_params())
        await fake_redis.set("rate_limit:read:1.2.3.4", 3)

        deleted = await cache_service.clear_all_cache()

        assert deleted.user_keys == 2
        assert deleted.query_keys == 1
        assert deleted.all_users_key == 1
        assert deleted.total == 4
        assert await fake_redis.exists("users:all") == 0
        # Rate limit counters are not part of the user cache
        assert await fake_redis.get("rate_limit:read:1.2.3.4") == b"3"

    async def test__clear_all_cache__empty(self, cache_service: UserCacheService) -> None:
        deleted = await cache_service.clear_all_cache()

        assert deleted.total == 0

    async def test__cache_stats__lists_user_keys(
        self,
        cache_service: UserCacheService,
        db_session: AsyncSession,
    ) -> None:
        user = await create(cache_service, db_session)
        await cache_service.read_one(db_session, UUID(user["id"]))

        stats = await cache_service.cache_stats()

        assert stats.total_user_cache_keys == 1
        assert stats.user_cache_keys == [cache_keys.user_key(UUID(user["id"]))]
        assert stats.all_users_cached is False
        assert isinstance(stats.cache_info, dict)
