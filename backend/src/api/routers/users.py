"""User CRUD endpoints, backed by the cache-aside accessor."""
import logging
import time
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import enforce_rate_limit, get_async_session, get_user_cache_service
from schemas.user import (
    CacheClearResponse,
    CacheStatsResponse,
    MessageResponse,
    SeedResponse,
    SeedResult,
    UserCollectionResponse,
    UserCreate,
    UserDetailResponse,
    UserMutationResponse,
    UserQuery,
    UserQueryResponse,
    UserUpdate,
)
from services.exceptions import UserNotFoundError
from services.seed_service import generate_users
from services.user_cache_service import UserCacheService

logger = logging.getLogger(__name__)

# Every route counts against the global policy plus its route-class policy
# (read, write, or admin; see core.rate_limit_config.ADMIN_ENDPOINTS).
router = APIRouter(
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(enforce_rate_limit)],
)

DEFAULT_SEED_COUNT = 100
MAX_SEED_COUNT = 1000


def _elapsed(started: float) -> str:
    return f"{(time.perf_counter() - started) * 1000:.2f}ms"


def _parse_user_id(raw: str) -> UUID:
    """A malformed id cannot match any record, so it is reported as not found."""
    try:
        return UUID(raw)
    except ValueError:
        raise UserNotFoundError(raw) from None


# Fixed paths are registered before /{user_id} so they are not captured as ids.


@router.delete("/cache/clear", response_model=CacheClearResponse)
async def clear_user_cache(
    cache: UserCacheService = Depends(get_user_cache_service),
) -> CacheClearResponse:
    """Delete every user-cache key (single records, collection, queries)."""
    deleted = await cache.clear_all_cache()
    return CacheClearResponse(message="User cache cleared successfully", deleted_keys=deleted)


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    cache: UserCacheService = Depends(get_user_cache_service),
) -> CacheStatsResponse:
    """Report cached single-record keys, whether the collection is cached, and Redis memory info."""
    return CacheStatsResponse(data=await cache.cache_stats())


@router.post("/seed", response_model=SeedResponse)
async def seed_users(
    count: int = Query(default=DEFAULT_SEED_COUNT, ge=1, le=MAX_SEED_COUNT),
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> SeedResponse:
    """Insert `count` randomly generated users (development helper)."""
    created = await cache.seed(db, generate_users(count))
    logger.info("users_seeded", extra={"requested": count, "created": created})
    return SeedResponse(
        message="Database seeded successfully",
        data=SeedResult(users_created=created),
    )


@router.get("", response_model=UserQueryResponse)
async def list_users(
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    sort_order: str | None = Query(default=None, alias="sortOrder"),
    search: str | None = Query(default=None),
    is_active: str | None = Query(default=None, alias="isActive"),
    city: str | None = Query(default=None),
    state: str | None = Query(default=None),
    country: str | None = Query(default=None),
    occupation: str | None = Query(default=None),
    company: str | None = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> UserQueryResponse:
    """
    List users with pagination, search, filters, and sorting.

    Parameters are lenient: out-of-range paging is clamped, an unknown sort field
    falls back to newest first, and blank filters are ignored.

    - **search**: Case-insensitive match on name, email, occupation, company, or city
    - **isActive**: true / false
    - **city, state, country, occupation, company**: Case-insensitive substring filters
    """
    started = time.perf_counter()
    query = UserQuery.from_params(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
        is_active=is_active,
        city=city,
        state=state,
        country=country,
        occupation=occupation,
        company=company,
    )
    result = await cache.read_query(db, query)
    return UserQueryResponse(
        **result.data,
        source=result.source,
        response_time=_elapsed(started),
    )


@router.get("/all", response_model=UserCollectionResponse)
async def list_all_users(
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> UserCollectionResponse:
    """Every user, newest first, without pagination."""
    started = time.perf_counter()
    result = await cache.read_collection(db)
    return UserCollectionResponse(
        data=result.data,
        count=len(result.data),
        source=result.source,
        response_time=_elapsed(started),
    )


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> UserDetailResponse:
    """Get a single user."""
    started = time.perf_counter()
    result = await cache.read_one(db, _parse_user_id(user_id))
    return UserDetailResponse(
        data=result.data,
        source=result.source,
        response_time=_elapsed(started),
    )


@router.post("", response_model=UserMutationResponse, status_code=201)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> UserMutationResponse:
    """Create a user. firstName, lastName, and email are required; email must be unique."""
    user = await cache.create(db, data)
    return UserMutationResponse(data=user)


@router.put("/{user_id}", response_model=UserMutationResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> UserMutationResponse:
    """Update only the fields present in the body."""
    user = await cache.update(db, _parse_user_id(user_id), data)
    return UserMutationResponse(data=user)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_async_session),
    cache: UserCacheService = Depends(get_user_cache_service),
) -> MessageResponse:
    """Delete a user."""
    await cache.delete(db, _parse_user_id(user_id))
    return MessageResponse(message="User deleted successfully")
