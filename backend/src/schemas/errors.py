"""
Error response schemas for API endpoints.

Every error body carries `success: false` and a human-readable `message`, matching
the success envelopes in schemas.user.
"""
from typing import Any

from pydantic import Field

from schemas.user import CamelModel


class ErrorResponse(CamelModel):
    """Generic error body (400, 404, 500)."""

    success: bool = False
    message: str
    # Exception detail, only populated in development mode
    error: str | None = None
    # Field-level validation problems for 400 responses
    errors: list[dict[str, Any]] | None = None


class RateLimitErrorResponse(CamelModel):
    """Body of a 429 response."""

    success: bool = False
    message: str
    retry_after: int = Field(description="Seconds until the window resets")
    limit: int
    window_ms: int
