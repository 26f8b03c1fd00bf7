"""Pydantic schemas for user endpoints."""
import math
from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Fields that may be sorted on. Anything else falls back to the default ordering.
SORTABLE_FIELDS: dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "city": "city",
    "state": "state",
    "country": "country",
    "occupation": "occupation",
    "company": "company",
    "dob": "dob",
}
DEFAULT_SORT_BY = "createdAt"
DEFAULT_SORT_ORDER = "desc"
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Exact-match-ish text filters exposed on GET /users (case-insensitive substring)
TEXT_FILTERS = ("city", "state", "country", "occupation", "company")

REQUIRED_FIELDS = ("first_name", "last_name", "email")
OPTIONAL_TEXT_FIELDS = (
    "middle_name",
    "phone",
    "address",
    "city",
    "state",
    "zip_code",
    "country",
    "occupation",
    "company",
    "website",
    "bio",
)


class CamelModel(BaseModel):
    """Base model exposing snake_case attributes as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(v: Any) -> Any:
    """Trim strings; an empty string means "no value"."""
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


def _check_email(v: str | None) -> str | None:
    if v is not None and ("@" not in v or v.startswith("@") or v.endswith("@")):
        raise ValueError("Email must be a valid email address")
    return v


class UserCreate(CamelModel):
    """
    Schema for creating a user.

    Required fields are declared optional here so that a missing or blank value is
    reported by the service layer with the same message whether the key was absent,
    null, or whitespace.
    """

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    middle_name: str | None = None
    phone: str | None = None
    dob: date | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    occupation: str | None = None
    company: str | None = None
    website: str | None = None
    bio: str | None = None
    is_active: bool = True

    @field_validator(*REQUIRED_FIELDS, *OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        """Normalize blank strings to None."""
        return _blank_to_none(v)

    @field_validator("dob", mode="before")
    @classmethod
    def blank_dob(cls, v: Any) -> Any:
        """Treat an empty date string as no date."""
        return _blank_to_none(v)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        """Validate email shape."""
        return _check_email(v)


class UserUpdate(CamelModel):
    """
    Schema for a partial update.

    Only keys present in the request body are applied (see `model_fields_set`).
    Sending null or "" for an optional field clears it; omitting it leaves it untouched.
    """

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    middle_name: str | None = None
    phone: str | None = None
    dob: date | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    occupation: str | None = None
    company: str | None = None
    website: str | None = None
    bio: str | None = None
    is_active: bool | None = None

    @field_validator(*REQUIRED_FIELDS, *OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        """Normalize blank strings to None."""
        return _blank_to_none(v)

    @field_validator("dob", mode="before")
    @classmethod
    def blank_dob(cls, v: Any) -> Any:
        """Treat an empty date string as clearing the date."""
        return _blank_to_none(v)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        """Validate email shape."""
        return _check_email(v)

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided in the request, keyed by attribute name."""
        return self.model_dump(include=self.model_fields_set)


class UserResponse(CamelModel):
    """A user as returned by the API and stored in the cache."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: UUID
    first_name: str
    middle_name: str | None = None
    last_name: str
    email: str
    phone: str | None = None
    dob: date | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    occupation: str | None = None
    company: str | None = None
    website: str | None = None
    bio: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


def _parse_int(raw: str | int | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def _parse_bool(raw: str | bool | None) -> bool | None:
    if raw is None or isinstance(raw, bool):
        return raw
    value = raw.strip().lower()
    if value in {"true", "1", "yes"}:
        return True
    if value in {"false", "0", "no"}:
        return False
    return None


class UserQuery(CamelModel):
    """
    A normalized GET /users query.

    Built with `from_params`, which never rejects input: page and page size are
    clamped, an unknown sort field falls back to createdAt desc, and blank or
    malformed filters are dropped. The normalized form is what gets fingerprinted
    into the cache key.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: str = DEFAULT_SORT_BY
    sort_order: Literal["asc", "desc"] = DEFAULT_SORT_ORDER
    search: str | None = None
    is_active: bool | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    occupation: str | None = None
    company: str | None = None

    @classmethod
    def from_params(
        cls,
        page: str | int | None = None,
        limit: str | int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
        search: str | None = None,
        is_active: str | bool | None = None,
        city: str | None = None,
        state: str | None = None,
        country: str | None = None,
        occupation: str | None = None,
        company: str | None = None,
    ) -> "UserQuery":
        """Build a normalized query from raw request parameters."""
        sort_field = (sort_by or "").strip()
        order = (sort_order or "").strip().lower()
        if sort_field not in SORTABLE_FIELDS:
            sort_field, order = DEFAULT_SORT_BY, DEFAULT_SORT_ORDER
        elif order not in {"asc", "desc"}:
            order = DEFAULT_SORT_ORDER

        return cls(
            page=max(1, _parse_int(page, 1)),
            limit=min(MAX_PAGE_SIZE, max(1, _parse_int(limit, DEFAULT_PAGE_SIZE))),
            sort_by=sort_field,
            sort_order=order,
            search=_blank_to_none(search),
            is_active=_parse_bool(is_active),
            city=_blank_to_none(city),
            state=_blank_to_none(state),
            country=_blank_to_none(country),
            occupation=_blank_to_none(occupation),
            company=_blank_to_none(company),
        )

    @property
    def offset(self) -> int:
        """Row offset of the requested page."""
        return (self.page - 1) * self.limit

    @property
    def sort_column(self) -> str:
        """Model attribute to order by."""
        return SORTABLE_FIELDS[self.sort_by]

    def filters(self) -> dict[str, Any]:
        """Applied filters (camelCase keys), omitting unset ones."""
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            include={"search", "is_active", *TEXT_FILTERS},
        )

    def sorting(self) -> dict[str, str]:
        """Applied ordering."""
        return {"sortBy": self.sort_by, "sortOrder": self.sort_order}

    def cache_params(self) -> dict[str, Any]:
        """Every parameter that affects the result, for fingerprinting."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PaginationInfo(CamelModel):
    """Pagination block of a listing response."""

    current_page: int
    total_pages: int
    total_users: int
    users_per_page: int
    has_next_page: bool
    has_prev_page: bool
    next_page: int | None
    prev_page: int | None

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> "PaginationInfo":
        """Derive page navigation from the total match count."""
        total_pages = math.ceil(total / limit) if total else 0
        has_next = page < total_pages
        has_prev = page > 1
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_users=total,
            users_per_page=limit,
            has_next_page=has_next,
            has_prev_page=has_prev,
            next_page=page + 1 if has_next else None,
            prev_page=page - 1 if has_prev else None,
        )


class SortingInfo(CamelModel):
    """Sorting block of a listing response."""

    sort_by: str
    sort_order: Literal["asc", "desc"]


class UserPage(CamelModel):
    """The cached part of a listing response: one page plus its metadata."""

    data: list[UserResponse]
    pagination: PaginationInfo
    filters: dict[str, Any]
    sorting: SortingInfo


class UserQueryResponse(CamelModel):
    """Response for GET /users."""

    success: bool = True
    data: list[UserResponse]
    pagination: PaginationInfo
    filters: dict[str, Any]
    sorting: SortingInfo
    source: Literal["cache", "database"]
    response_time: str


class UserCollectionResponse(CamelModel):
    """Response for GET /users/all."""

    success: bool = True
    data: list[UserResponse]
    count: int
    source: Literal["cache", "database"]
    response_time: str


class UserDetailResponse(CamelModel):
    """Response for GET /users/{id}."""

    success: bool = True
    data: UserResponse
    source: Literal["cache", "database"]
    response_time: str


class UserMutationResponse(CamelModel):
    """Response for POST and PUT /users."""

    success: bool = True
    data: UserResponse


class MessageResponse(CamelModel):
    """Response carrying only a message."""

    success: bool = True
    message: str


class DeletedKeys(CamelModel):
    """Per-namespace counts of keys removed by a cache clear."""

    user_keys: int
    query_keys: int
    all_users_key: int
    total: int


class CacheClearResponse(CamelModel):
    """Response for DELETE /users/cache/clear."""

    success: bool = True
    message: str
    deleted_keys: DeletedKeys


class CacheStats(CamelModel):
    """Read-only snapshot of the user cache."""

    total_user_cache_keys: int
    all_users_cached: bool
    user_cache_keys: list[str]
    cache_info: dict[str, Any] = Field(default_factory=dict)


class CacheStatsResponse(CamelModel):
    """Response for GET /users/cache/stats."""

    success: bool = True
    data: CacheStats


class SeedResult(CamelModel):
    """Outcome of seeding random users."""

    users_created: int


class SeedResponse(CamelModel):
    """Response for POST /users/seed."""

    success: bool = True
    message: str
    data: SeedResult
