"""In-process store for development and tests (same uniqueness rules as the Postgres schema)."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from lawlzer.auth.models import PROVIDER_ID_FIELDS, Session, User
from lawlzer.core.clock import utcnow
from lawlzer.storage.base import StoreError, UniquenessConflict

UNIQUE_USER_FIELDS = ("username", "email") + tuple(PROVIDER_ID_FIELDS.values())


@dataclass
class InMemoryAuthStore:
    users: Dict[str, User] = field(default_factory=dict)
    sessions: Dict[str, Session] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _find_by(self, attr: str, value: Optional[str]) -> Optional[User]:
        if value is None:
            return None
        for user in self.users.values():
            if getattr(user, attr) == value:
                return user
        return None

    def _check_unique(self, user: User, *, exclude_id: Optional[str] = None) -> None:
        for attr in UNIQUE_USER_FIELDS:
            owner = self._find_by(attr, getattr(user, attr))
            if owner is not None and owner.id != exclude_id:
                raise UniquenessConflict(attr)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def find_user_by_provider_id(self, provider: str, provider_user_id: str) -> Optional[User]:
        with self._lock:
            user = self._find_by(PROVIDER_ID_FIELDS[provider], provider_user_id)
            return replace(user) if user else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user = self._find_by("email", email)
            return replace(user) if user else None

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            user = self._find_by("username", username)
            return replace(user) if user else None

    def create_user(self, user: User) -> User:
        with self._lock:
            if user.id in self.users:
                raise UniquenessConflict("id")
            self._check_unique(user)
            now = utcnow()
            stored = replace(user, created_at=user.created_at or now, updated_at=now)
            self.users[stored.id] = stored
            return replace(stored)

    def update_user(self, user_id: str, **fields: Any) -> User:
        unknown = set(fields) - set(UNIQUE_USER_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(sorted(unknown))}")
        with self._lock:
            current = self.users.get(user_id)
            if current is None:
                raise StoreError(f"User not found: {user_id}")
            updated = replace(current, **fields)
            self._check_unique(updated, exclude_id=user_id)
            updated.updated_at = utcnow()
            self.users[user_id] = updated
            return replace(updated)

    def create_session(self, session: Session) -> Session:
        with self._lock:
            if session.session_id in self.sessions:
                raise UniquenessConflict("session_id")
            self.sessions[session.session_id] = session
            return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self.sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self.sessions.pop(session_id, None) is not None
