"""Pytest fixtures for testing."""
import os

# db.session builds its engine from settings at import time, so the environment must
# point at the in-memory database before any app module is imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEV_MODE"] = "false"

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from fakeredis import FakeAsyncRedis, FakeServer  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.config import Settings  # noqa: E402
from core.rate_limit_store import RedisRateLimitStore  # noqa: E402
from core.redis import RedisClient  # noqa: E402
from models.base import Base  # noqa: E402
from services.user_cache_service import UserCacheService  # noqa: E402


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """
    Create a fresh in-memory database per test.

    StaticPool keeps a single connection, so every session in the test sees the
    same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory matching the application's (no expiry on commit)."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create an async session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def fake_redis() -> AsyncGenerator[FakeAsyncRedis]:
    """In-process Redis with Lua support, isolated per test."""
    client = FakeAsyncRedis(server=FakeServer())
    yield client
    await client.aclose()


@pytest.fixture
async def redis_client(fake_redis: FakeAsyncRedis) -> RedisClient:
    """Real RedisClient wrapper running against the in-process Redis."""
    client = RedisClient(url="redis://test:6379")
    await client.attach(fake_redis)
    return client


@pytest.fixture
def cache_service(redis_client: RedisClient) -> UserCacheService:
    """Cache-aside accessor with default TTLs."""
    return UserCacheService(redis_client)


@pytest.fixture
def rate_limit_store(redis_client: RedisClient) -> RedisRateLimitStore:
    """Rate limit counters in the in-process Redis."""
    return RedisRateLimitStore(redis_client)


@pytest.fixture
def settings() -> Settings:
    """
    Application settings for API tests.

    Override this fixture in a test module to change limits or flags.
    """
    return Settings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: RedisClient,
    cache_service: UserCacheService,
    rate_limit_store: RedisRateLimitStore,
    settings: Settings,
) -> AsyncGenerator[AsyncClient]:
    """Create a test client with database, Redis, and settings overrides."""
    from api.main import app
    from core.config import get_settings
    from core.rate_limiter import get_rate_limit_store
    from core.redis import get_redis_client
    from db.session import get_async_session
    from api.dependencies import get_user_cache_service

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_redis_client] = lambda: redis_client
    app.dependency_overrides[get_user_cache_service] = lambda: cache_service
    app.dependency_overrides[get_rate_limit_store] = lambda: rate_limit_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def user_payload() -> dict:
    """A valid create-user request body."""
    return {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "occupation": "Mathematician",
        "city": "London",
        "country": "UK",
    }
