"""Shared exceptions for service layer operations."""
from uuid import UUID


class UserValidationError(Exception):
    """Raised when required user input is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class UserNotFoundError(Exception):
    """Raised when a user id does not exist in the database."""

    def __init__(self, user_id: UUID | str) -> None:
        self.user_id = user_id
        super().__init__("User not found")


class DuplicateEmailError(Exception):
    """Raised when a create or update would violate the unique email constraint."""

    def __init__(self, email: str | None) -> None:
        self.email = email
        super().__init__("Email already exists")
