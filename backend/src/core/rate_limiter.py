"""
Rate limiting enforcement.

This module contains the enforcement logic - the "how" of rate limiting.
For configuration (policies, admin endpoints), see rate_limit_config.py.
For counter storage, see rate_limit_store.py.
"""
import ipaddress
import logging
import math
import time

from fastapi import Depends, Request

from core.config import Settings, get_settings
from core.rate_limit_config import (
    RateLimitExceededError,
    RateLimitPolicy,
    RateLimitResult,
    RatePolicies,
    RouteClass,
    build_policies,
    get_route_class,
)
from core.rate_limit_store import RateLimitStore

logger = logging.getLogger(__name__)

# IPv6 clients are counted per /56 network, the usual allocation to a single site.
IPV6_SUBNET_PREFIX = 56
UNKNOWN_CLIENT = "unknown"


def client_identity(host: str | None) -> str:
    """
    Derive the counter identity for a client address.

    IPv4 addresses are used as-is, IPv6 addresses are collapsed to their /56
    network, and anything unparseable is used verbatim.
    """
    if not host:
        return UNKNOWN_CLIENT
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return host
    if isinstance(address, ipaddress.IPv6Address):
        if address.ipv4_mapped is not None:
            return str(address.ipv4_mapped)
        network = ipaddress.IPv6Network(f"{address}/{IPV6_SUBNET_PREFIX}", strict=False)
        return str(network)
    return str(address)


def rate_limit_key(policy: RateLimitPolicy, client: str) -> str:
    """Counter key, relative to the store's `rate_limit:` prefix."""
    return f"{policy.prefix}:{client}"


async def check_policy(
    store: RateLimitStore,
    policy: RateLimitPolicy,
    client: str,
) -> RateLimitResult:
    """Count one hit against `policy` and report whether it is within the limit."""
    hit = await store.increment(rate_limit_key(policy, client), policy.window_ms)
    # Read the clock after the store did, so the reset never exceeds the window
    now = time.time()
    reset = max(0, math.ceil(hit.reset_time - now))
    allowed = hit.total_hits <= policy.max_hits
    return RateLimitResult(
        allowed=allowed,
        limit=policy.max_hits,
        remaining=max(0, policy.max_hits - hit.total_hits),
        reset=reset,
        retry_after=0 if allowed else reset,
        window_ms=policy.window_ms,
    )


async def check_rate_limit(
    store: RateLimitStore,
    policies: RatePolicies,
    route_class: RouteClass,
    client: str,
) -> RateLimitResult:
    """
    Evaluate the global policy, then the route-class policy.

    Returns the first failing result, otherwise the route-class result (the more
    specific one, used for response headers).
    """
    global_result = await check_policy(store, policies[RouteClass.GLOBAL], client)
    if not global_result.allowed:
        _log_exceeded(client, "global")
        return global_result
    if route_class == RouteClass.GLOBAL:
        return global_result

    result = await check_policy(store, policies[route_class], client)
    if not result.allowed:
        _log_exceeded(client, route_class.value)
    return result


def _log_exceeded(client: str, policy: str) -> None:
    logger.warning(
        "rate_limit_exceeded",
        extra={"client": client, "policy": policy},
    )


def get_rate_limit_store(request: Request) -> RateLimitStore:
    """Process-wide rate limit store, built during app startup."""
    return request.app.state.rate_limit_store


def get_rate_limit_policies(settings: Settings = Depends(get_settings)) -> RatePolicies:
    """Policies for the current settings."""
    return build_policies(settings)


async def enforce_rate_limit(
    request: Request,
    store: RateLimitStore = Depends(get_rate_limit_store),
    policies: RatePolicies = Depends(get_rate_limit_policies),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Enforce the global policy and the policy for this request's route class.

    Stores header info on `request.state.rate_limit_info` for the headers
    middleware, and raises RateLimitExceededError when a limit is exceeded.
    """
    if not settings.rate_limit_enabled:
        return
    route_class = get_route_class(request.method, request.url.path)
    client = client_identity(request.client.host if request.client else None)
    result = await check_rate_limit(store, policies, route_class, client)
    request.state.rate_limit_info = {
        "limit": result.limit,
        "remaining": result.remaining,
        "reset": result.reset,
    }
    if not result.allowed:
        raise RateLimitExceededError(result)
