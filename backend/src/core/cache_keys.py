"""
Cache key layout for user records.

Namespaces (all share the Redis keyspace with the rate limiter, so prefixes must
never overlap with each other or with `rate_limit:`):

- `user:<id>`                   one serialized user
- `users:all`                   every user, newest first
- `users:query:<fingerprint>`   one page of a filtered/sorted/paginated listing

The fingerprint is derived from the normalized query (see schemas.user.UserQuery),
so two requests that differ only in parameter order, surrounding whitespace or
empty optional filters map to the same key. Invalidation by pattern relies on this:
an order-sensitive key would multiply entries that a write can no longer find.
"""
import base64
import json
from typing import Any
from uuid import UUID

USER_KEY_PREFIX = "user:"
ALL_USERS_KEY = "users:all"
QUERY_KEY_PREFIX = "users:query:"

USER_KEY_PATTERN = f"{USER_KEY_PREFIX}*"
QUERY_KEY_PATTERN = f"{QUERY_KEY_PREFIX}*"


def user_key(user_id: UUID | str) -> str:
    """Cache key for a single user."""
    return f"{USER_KEY_PREFIX}{user_id}"


def all_users_key() -> str:
    """Cache key for the full user collection."""
    return ALL_USERS_KEY


def canonicalize(params: dict[str, Any]) -> str:
    """
    Serialize query parameters to a canonical JSON string.

    None values and blank strings are dropped (an omitted filter and an empty one are
    the same query), strings are trimmed, and keys are sorted.
    """
    normalized: dict[str, Any] = {}
    for name, value in params.items():
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        if value is None:
            continue
        normalized[name] = value
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)


def query_fingerprint(params: dict[str, Any]) -> str:
    """URL-safe base64 of the canonical parameter encoding."""
    return base64.urlsafe_b64encode(canonicalize(params).encode()).decode()


def query_key(params: dict[str, Any]) -> str:
    """Cache key for one page of a user listing."""
    return f"{QUERY_KEY_PREFIX}{query_fingerprint(params)}"
