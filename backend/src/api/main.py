"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import health, users
from core.config import get_settings
from core.rate_limit_config import RateLimitExceededError
from core.rate_limit_store import RedisRateLimitStore
from core.redis import RedisClient
from db.session import dispose_engine
from schemas.errors import ErrorResponse, RateLimitErrorResponse
from services.exceptions import DuplicateEmailError, UserNotFoundError, UserValidationError
from services.user_cache_service import UserCacheService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: Connect to Redis. A failed connection leaves the client in
    # fallback mode; the API keeps serving from the database.
    redis_client = RedisClient(
        url=app_settings.redis_url,
        enabled=app_settings.redis_enabled,
        pool_size=app_settings.redis_pool_size,
        socket_timeout=app_settings.redis_socket_timeout,
    )
    await redis_client.connect()

    app.state.redis_client = redis_client
    app.state.user_cache_service = UserCacheService(
        redis_client,
        ttl_user=app_settings.cache_ttl_user,
        ttl_all_users=app_settings.cache_ttl_all_users,
        ttl_query=app_settings.cache_ttl_query,
    )
    app.state.rate_limit_store = RedisRateLimitStore(redis_client)

    yield

    # Shutdown: Close Redis and the database pool
    await redis_client.close()
    await dispose_engine()


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Add rate limit headers to successful responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add rate limit headers to response."""
        response = await call_next(request)

        # Add headers if rate limit info was stored by dependency
        # Note: 429 responses are handled by exception handler, not middleware
        info = getattr(request.state, "rate_limit_info", None)
        if info:
            response.headers["RateLimit-Limit"] = str(info["limit"])
            response.headers["RateLimit-Remaining"] = str(info["remaining"])
            response.headers["RateLimit-Reset"] = str(info["reset"])

        return response


app_settings = get_settings()

logging.basicConfig(
    level=app_settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title="Users API",
    description="User records with a Redis cache-aside layer and distributed rate limiting.",
    version="0.1.0",
    lifespan=lifespan,
)


def _error(
    status_code: int, body: ErrorResponse, headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(RateLimitExceededError)
async def rate_limit_exception_handler(
    _request: Request, exc: RateLimitExceededError,
) -> JSONResponse:
    """Handle rate limit exceeded with proper headers."""
    body = RateLimitErrorResponse(
        message=str(exc),
        retry_after=exc.result.retry_after,
        limit=exc.result.limit,
        window_ms=exc.result.window_ms,
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers={
            "Retry-After": str(exc.result.retry_after),
            "RateLimit-Limit": str(exc.result.limit),
            "RateLimit-Remaining": "0",
            "RateLimit-Reset": str(exc.result.reset),
        },
    )


@app.exception_handler(UserNotFoundError)
async def user_not_found_handler(_request: Request, exc: UserNotFoundError) -> JSONResponse:
    """Unknown user id."""
    return _error(404, ErrorResponse(message=str(exc)))


@app.exception_handler(UserValidationError)
@app.exception_handler(DuplicateEmailError)
async def user_input_error_handler(
    _request: Request, exc: UserValidationError | DuplicateEmailError,
) -> JSONResponse:
    """Missing required fields or an email that is already taken."""
    return _error(400, ErrorResponse(message=str(exc)))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request: Request, exc: RequestValidationError,
) -> JSONResponse:
    """Malformed body or parameters. Reported as 400 with one entry per problem."""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return _error(400, ErrorResponse(message="Validation failed", errors=errors))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    _request: Request, exc: StarletteHTTPException,
) -> JSONResponse:
    """Keep the success/message envelope for framework errors (404 route, 405, ...)."""
    return _error(
        exc.status_code,
        ErrorResponse(message=str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500; the exception text is only exposed in dev mode."""
    logger.exception(
        "unhandled_exception",
        extra={"method": request.method, "path": request.url.path},
    )
    return _error(
        500,
        ErrorResponse(
            message="Internal server error",
            error=str(exc) if get_settings().dev_mode else None,
        ),
    )


# Rate limit headers middleware (adds headers to successful responses)
app.add_middleware(RateLimitHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(users.router)
