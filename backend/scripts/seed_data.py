"""Seed script to populate the local dev database with random users.

Usage:
    PYTHONPATH=backend/src python backend/scripts/seed_data.py populate
    PYTHONPATH=backend/src python backend/scripts/seed_data.py populate --count 500 --force
    PYTHONPATH=backend/src python backend/scripts/seed_data.py clear

Both commands also drop the user cache, so running API instances never serve
listings that predate the change.
"""

import argparse
import asyncio

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from core.redis import RedisClient
from models import User
from services.seed_service import generate_users
from services.user_cache_service import UserCacheService


async def count_users(session: AsyncSession) -> int:
    """Number of user rows."""
    return (await session.execute(select(func.count()).select_from(User))).scalar() or 0


async def clear_data(session: AsyncSession) -> None:
    """Delete every user."""
    existing = await count_users(session)
    if not existing:
        print('No users found, nothing to clear.')
        return
    await session.execute(delete(User))
    print(f'Deleted {existing} users.')


async def clear_cache() -> None:
    """Drop every user-cache key. Silently skipped when Redis is unavailable."""
    settings = get_settings()
    redis_client = RedisClient(url=settings.redis_url, enabled=settings.redis_enabled)
    await redis_client.connect()
    try:
        deleted = await UserCacheService(redis_client).clear_all_cache()
        if redis_client.is_connected:
            print(f'Cleared {deleted.total} cache keys.')
    finally:
        await redis_client.close()


async def populate(count: int, force: bool = False) -> None:
    """Populate the database with `count` random users."""
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            existing = await count_users(session)
            if existing:
                if force:
                    print('Existing data found, clearing first (--force)...')
                    await clear_data(session)
                    await session.flush()
                else:
                    print(
                        f'Data already exists ({existing} users). '
                        f'Use --force to clear and re-seed.'
                    )
                    return

            print(f'Populating {count} users...')
            cache = UserCacheService(RedisClient(url=settings.redis_url, enabled=False))
            created = await cache.seed(session, generate_users(count))
            print(f'Created {created} users.')
        except Exception:
            await session.rollback()
            raise
        finally:
            await engine.dispose()

    await clear_cache()


async def clear() -> None:
    """Remove every user."""
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            await clear_data(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await engine.dispose()

    await clear_cache()


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    if not settings.dev_mode:
        print(
            'ERROR: Seed script requires DEV_MODE=true.\n'
            'This script modifies data directly and must only run against a local dev database.'
        )
        raise SystemExit(1)

    parser = argparse.ArgumentParser(description='Seed the dev database with random users.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    populate_parser = subparsers.add_parser('populate', help='Populate database with random users')
    populate_parser.add_argument(
        '--count', type=int, default=100,
        help='Number of users to generate (default: 100)',
    )
    populate_parser.add_argument(
        '--force', action='store_true',
        help='Clear existing data before populating',
    )

    subparsers.add_parser('clear', help='Remove all users')

    args = parser.parse_args()

    if args.command == 'populate':
        asyncio.run(populate(count=args.count, force=args.force))
    elif args.command == 'clear':
        asyncio.run(clear())


if __name__ == '__main__':
    main()
