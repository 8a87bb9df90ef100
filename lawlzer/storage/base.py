from __future__ import annotations

from typing import Any, Optional, Protocol

from lawlzer.auth.models import Session, User


class StoreError(Exception):
    """Persistence failure the caller is expected to handle."""


class UniquenessConflict(StoreError):
    """A write collided with a unique identifier already owned by another row."""

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message or f"Duplicate value for unique field: {field}")


class AuthStore(Protocol):
    """Backing store for users and sessions."""

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def find_user_by_provider_id(self, provider: str, provider_user_id: str) -> Optional[User]:
        ...

    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    def find_user_by_username(self, username: str) -> Optional[User]:
        ...

    def create_user(self, user: User) -> User:
        """
        Insert a new user.

        Raises:
            UniquenessConflict: if any non-null identifier is already taken
        """
        ...

    def update_user(self, user_id: str, **fields: Any) -> User:
        """
        Update identifier fields (username, email, *_id) on an existing user.

        Raises:
            UniquenessConflict: if a new value is already taken by another user
            StoreError: if the user does not exist
        """
        ...

    def create_session(self, session: Session) -> Session:
        ...

    def get_session(self, session_id: str) -> Optional[Session]:
        ...

    def delete_session(self, session_id: str) -> bool:
        """Delete a session. Returns False if it was already gone."""
        ...
