"""Health check endpoints."""
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_redis_client
from core.redis import RedisClient
from schemas.user import CamelModel


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class RedisHealth(CamelModel):
    """Redis reachability."""

    status: str
    response: str | None = None
    error: str | None = None


class ServicesHealth(CamelModel):
    """Per-dependency health."""

    api: str
    redis: RedisHealth
    database: str


class HealthResponse(CamelModel):
    """Health check response."""

    success: bool = True
    message: str
    timestamp: datetime
    services: ServicesHealth


@router.get(
    "/health",
    response_model=HealthResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    redis_client: RedisClient = Depends(get_redis_client),
) -> HealthResponse:
    """
    Check application, Redis, and database health.

    Always answers 200: the API keeps serving from the database when Redis is down,
    so a Redis outage is reported as degraded rather than failed.
    """
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        db_status = "unhealthy"

    if await redis_client.ping():
        redis_health = RedisHealth(status="healthy", response="PONG")
    else:
        redis_health = RedisHealth(status="unhealthy", error="Redis unavailable")

    degraded = db_status != "healthy" or redis_health.status != "healthy"
    return HealthResponse(
        message="API is running in degraded mode" if degraded else "API is running",
        timestamp=datetime.now(UTC),
        services=ServicesHealth(api="healthy", redis=redis_health, database=db_status),
    )
