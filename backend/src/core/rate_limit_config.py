"""
Rate limiting configuration and types.

This module contains the policy configuration for rate limiting - the "what" limits
to apply, separate from the "how" (enforcement logic in rate_limiter.py) and the
counter storage (rate_limit_store.py).

Policies are pure configuration. Defaults live in core.config.Settings and can be
overridden per environment (RATE_LIMIT_<POLICY>_WINDOW_MS / RATE_LIMIT_<POLICY>_MAX).
"""
from dataclasses import dataclass
from enum import StrEnum

from core.config import Settings


class RouteClass(StrEnum):
    """Class of route, each with its own policy. GLOBAL applies to every request."""

    GLOBAL = "global"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


@dataclass(frozen=True)
class RateLimitPolicy:
    """A fixed window: at most `max_hits` requests per `window_ms` per client."""

    name: str
    window_ms: int
    max_hits: int
    # Namespaces the counter key so policies never share a counter
    prefix: str

    @property
    def window_seconds(self) -> int:
        """Window length rounded up to whole seconds."""
        return -(-self.window_ms // 1000)


@dataclass
class RateLimitResult:
    """Result of a rate limit check with all info needed for headers."""

    allowed: bool
    limit: int  # Max requests in current window
    remaining: int  # Requests remaining in current window
    reset: int  # Seconds until the window resets
    retry_after: int  # Seconds until retry allowed (0 if allowed)
    window_ms: int


class RateLimitExceededError(Exception):
    """Raised when rate limit is exceeded."""

    def __init__(self, result: RateLimitResult) -> None:
        self.result = result
        super().__init__("Too many requests, please try again later.")


RatePolicies = dict[RouteClass, RateLimitPolicy]


def build_policies(settings: Settings) -> RatePolicies:
    """Build the four policies from settings."""
    return {
        RouteClass.GLOBAL: RateLimitPolicy(
            name="global",
            window_ms=settings.rate_limit_global_window_ms,
            max_hits=settings.rate_limit_global_max,
            prefix="general",
        ),
        RouteClass.READ: RateLimitPolicy(
            name="read",
            window_ms=settings.rate_limit_read_window_ms,
            max_hits=settings.rate_limit_read_max,
            prefix="read",
        ),
        RouteClass.WRITE: RateLimitPolicy(
            name="write",
            window_ms=settings.rate_limit_write_window_ms,
            max_hits=settings.rate_limit_write_max,
            prefix="write",
        ),
        RouteClass.ADMIN: RateLimitPolicy(
            name="admin",
            window_ms=settings.rate_limit_admin_window_ms,
            max_hits=settings.rate_limit_admin_max,
            prefix="admin",
        ),
    }


# ---------------------------------------------------------------------------
# Admin Endpoints
# ---------------------------------------------------------------------------
# Cache management and seeding get the admin policy instead of read/write.
# Format: (HTTP_METHOD, path_without_query_params)

ADMIN_ENDPOINTS: set[tuple[str, str]] = {
    ("DELETE", "/users/cache/clear"),
    ("GET", "/users/cache/stats"),
    ("POST", "/users/seed"),
}


def get_route_class(method: str, path: str) -> RouteClass:
    """Determine route class from HTTP method and path."""
    if (method.upper(), path.rstrip("/") or "/") in ADMIN_ENDPOINTS:
        return RouteClass.ADMIN
    if method.upper() in {"GET", "HEAD", "OPTIONS"}:
        return RouteClass.READ
    return RouteClass.WRITE
