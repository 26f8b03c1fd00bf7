"""FastAPI dependencies for injection."""
from fastapi import Request

from core.config import get_settings
from core.rate_limiter import enforce_rate_limit, get_rate_limit_policies, get_rate_limit_store
from core.redis import get_redis_client
from db.session import get_async_session
from services.user_cache_service import UserCacheService


def get_user_cache_service(request: Request) -> UserCacheService:
    """Process-wide cache-aside accessor, built during app startup."""
    return request.app.state.user_cache_service


__all__ = [
    "enforce_rate_limit",
    "get_async_session",
    "get_rate_limit_policies",
    "get_rate_limit_store",
    "get_redis_client",
    "get_settings",
    "get_user_cache_service",
]
