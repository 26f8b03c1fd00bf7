"""Async SQLAlchemy engine and per-request sessions."""
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings


settings = get_settings()


def _engine_options(database_url: str) -> dict[str, Any]:
    """Pool options; SQLite (used for local runs and tests) has no sized pool."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def dispose_engine() -> None:
    """Close pooled database connections on shutdown."""
    await engine.dispose()


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Yield an async database session.

    Read endpoints never write, and write endpoints commit inside the cache layer
    before invalidating, so the final commit here is a no-op for them. Anything left
    uncommitted when a handler raises is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
