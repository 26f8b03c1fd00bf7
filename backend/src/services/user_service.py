"""
Source-of-truth operations for user records.

These functions talk to the database only; caching lives in user_cache_service.

Note: Functions flush but do not commit. The caller decides when the unit of work is
committed (the cache layer commits before invalidating).
"""
import logging
from uuid import UUID

from sqlalchemy import ColumnElement, Select, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from models.user import User
from schemas.user import REQUIRED_FIELDS, TEXT_FILTERS, UserCreate, UserQuery, UserUpdate
from services.exceptions import DuplicateEmailError, UserNotFoundError, UserValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "First name, last name, and email are required"

# Columns matched by the free-text `search` parameter
SEARCH_COLUMNS = (
    User.first_name,
    User.middle_name,
    User.last_name,
    User.email,
    User.occupation,
    User.company,
    User.city,
)


def escape_like(value: str) -> str:
    r"""Escape LIKE wildcards so user input is matched literally (uses \ as escape)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column: InstrumentedAttribute, value: str) -> ColumnElement[bool]:
    """Case-insensitive substring match."""
    return column.ilike(f"%{escape_like(value)}%", escape="\\")


def _is_email_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return "email" in message and ("unique" in message or "duplicate" in message)


def _apply_filters(stmt: Select, query: UserQuery) -> Select:
    """Apply the query's search and field filters to a SELECT."""
    if query.search:
        stmt = stmt.where(or_(*(_contains(column, query.search) for column in SEARCH_COLUMNS)))
    if query.is_active is not None:
        stmt = stmt.where(User.is_active.is_(query.is_active))
    for name in TEXT_FILTERS:
        value = getattr(query, name)
        if value:
            stmt = stmt.where(_contains(getattr(User, name), value))
    return stmt


async def get_user(db: AsyncSession, user_id: UUID) -> User | None:
    """Get a user by id. Returns None if not found."""
    return await db.get(User, user_id)


async def list_users(db: AsyncSession) -> list[User]:
    """All users, newest first."""
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def count_users(db: AsyncSession, query: UserQuery | None = None) -> int:
    """Count users, optionally restricted to a query's filters."""
    stmt = select(func.count()).select_from(User)
    if query is not None:
        stmt = _apply_filters(stmt, query)
    result = await db.execute(stmt)
    return result.scalar_one()


async def search_users(db: AsyncSession, query: UserQuery) -> tuple[list[User], int]:
    """
    Filter, sort and paginate users.

    Returns:
        Tuple of (users on the requested page, total matching users).
    """
    total = await count_users(db, query)

    sort_column = getattr(User, query.sort_column)
    if query.sort_order == "asc":
        order_by = (sort_column.asc(), User.id.asc())
    else:
        order_by = (sort_column.desc(), User.id.desc())

    stmt = (
        _apply_filters(select(User), query)
        .order_by(*order_by)
        .offset(query.offset)
        .limit(query.limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def create_user(db: AsyncSession, data: UserCreate) -> User:
    """
    Create a user.

    Raises:
        UserValidationError: If first name, last name or email is missing or blank.
        DuplicateEmailError: If the email is already registered.
    """
    if any(getattr(data, field) is None for field in REQUIRED_FIELDS):
        raise UserValidationError(REQUIRED_FIELDS_MESSAGE)

    user = User(**data.model_dump())
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        if _is_email_conflict(e):
            raise DuplicateEmailError(data.email) from e
        raise
    await db.refresh(user)
    logger.info("user_created", extra={"user_id": str(user.id)})
    return user


async def update_user(db: AsyncSession, user_id: UUID, data: UserUpdate) -> User:
    """
    Apply a partial update.

    Only fields present in the request are touched. Optional fields set to null are
    cleared; required fields and isActive cannot be cleared.

    Raises:
        UserNotFoundError: If the user does not exist.
        UserValidationError: If a required field is set to null or blank.
        DuplicateEmailError: If the new email is already registered.
    """
    changes = data.changes()
    cleared_required = [
        field for field in (*REQUIRED_FIELDS, "is_active")
        if field in changes and changes[field] is None
    ]
    if cleared_required:
        raise UserValidationError(f"Cannot clear required field(s): {', '.join(cleared_required)}")

    user = await get_user(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    for field, value in changes.items():
        setattr(user, field, value)

    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        if _is_email_conflict(e):
            raise DuplicateEmailError(changes.get("email")) from e
        raise
    await db.refresh(user)
    logger.info(
        "user_updated",
        extra={"user_id": str(user_id), "fields": sorted(changes)},
    )
    return user


async def delete_user(db: AsyncSession, user_id: UUID) -> None:
    """
    Delete a user.

    The existence check is a separate round-trip so a missing id produces a precise
    not-found error instead of depending on how the driver reports a no-op delete.

    Raises:
        UserNotFoundError: If the user does not exist.
    """
    user = await get_user(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    await db.delete(user)
    await db.flush()
    logger.info("user_deleted", extra={"user_id": str(user_id)})


async def bulk_create_users(db: AsyncSession, users: list[UserCreate]) -> list[User]:
    """
    Insert many users at once, skipping emails that already exist.

    Returns:
        The users that were inserted.
    """
    emails = [u.email for u in users if u.email]
    existing = set(
        (await db.execute(select(User.email).where(User.email.in_(emails)))).scalars().all(),
    )
    created: list[User] = []
    seen: set[str] = set()
    for data in users:
        if data.email in existing or data.email in seen:
            continue
        seen.add(data.email)
        user = User(**data.model_dump())
        db.add(user)
        created.append(user)
    await db.flush()
    return created
