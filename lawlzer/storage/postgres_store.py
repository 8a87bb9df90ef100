from __future__ import annotations

from typing import Any, Optional, Sequence

import psycopg

from lawlzer.auth.models import PROVIDER_ID_FIELDS, Session, User
from lawlzer.core.clock import as_utc
from lawlzer.storage.base import StoreError, UniquenessConflict

_USER_COLUMNS = "id, username, google_id, discord_id, github_id, email, created_at, updated_at"

_UPDATABLE_FIELDS = ("username", "email") + tuple(PROVIDER_ID_FIELDS.values())

# Constraint names from migrations/0001_auth_schema.sql.
CONSTRAINT_FIELDS = {
    "users_pkey": "id",
    "users_username_key": "username",
    "users_google_id_key": "google_id",
    "users_discord_id_key": "discord_id",
    "users_github_id_key": "github_id",
    "users_email_key": "email",
    "sessions_pkey": "session_id",
}


def _conflict(e: psycopg.errors.UniqueViolation) -> UniquenessConflict:
    constraint = getattr(getattr(e, "diag", None), "constraint_name", None) or ""
    return UniquenessConflict(CONSTRAINT_FIELDS.get(constraint, constraint or "unknown"))


def _row_to_user(row: Optional[Sequence[Any]]) -> Optional[User]:
    if not row:
        return None
    user_id, username, google_id, discord_id, github_id, email, created_at, updated_at = row
    return User(
        id=str(user_id),
        username=username,
        google_id=google_id,
        discord_id=discord_id,
        github_id=github_id,
        email=email,
        created_at=created_at,
        updated_at=updated_at,
    )


class PostgresAuthStore:
    """
    AuthStore backed by PostgreSQL (psycopg 3), one short-lived connection per operation.

    Unique violations surface as UniquenessConflict; every other driver error propagates.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.dsn)

    def _fetch_user(self, where: str, params: Sequence[Any]) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE {where}", params).fetchone()
        return _row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._fetch_user("id = %s", (user_id,))

    def find_user_by_provider_id(self, provider: str, provider_user_id: str) -> Optional[User]:
        column = PROVIDER_ID_FIELDS[provider]
        return self._fetch_user(f"{column} = %s", (provider_user_id,))

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_user("email = %s", (email,))

    def find_user_by_username(self, username: str) -> Optional[User]:
        return self._fetch_user("username = %s", (username,))

    def create_user(self, user: User) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO users (id, username, google_id, discord_id, github_id, email)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (user.id, user.username, user.google_id, user.discord_id, user.github_id, user.email),
                ).fetchone()
        except psycopg.errors.UniqueViolation as e:
            raise _conflict(e) from e
        created = _row_to_user(row)
        if created is None:
            raise StoreError("Failed to create user")
        return created

    def update_user(self, user_id: str, **fields: Any) -> User:
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(sorted(unknown))}")
        if not fields:
            current = self.get_user(user_id)
            if current is None:
                raise StoreError(f"User not found: {user_id}")
            return current

        # Column names come from the allowlist above, values are bound parameters.
        assignments = ", ".join(f"{name} = %s" for name in fields)
        params = list(fields.values()) + [user_id]
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    UPDATE users
                    SET {assignments}, updated_at = now()
                    WHERE id = %s
                    RETURNING {_USER_COLUMNS}
                    """,
                    params,
                ).fetchone()
        except psycopg.errors.UniqueViolation as e:
            raise _conflict(e) from e
        updated = _row_to_user(row)
        if updated is None:
            raise StoreError(f"User not found: {user_id}")
        return updated

    def create_session(self, session: Session) -> Session:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO sessions (session_id, user_id, expires_at) VALUES (%s, %s, %s)",
                    (session.session_id, session.user_id, session.expires_at),
                )
        except psycopg.errors.UniqueViolation as e:
            raise _conflict(e) from e
        except psycopg.errors.ForeignKeyViolation as e:
            raise StoreError(f"Unknown user for session: {session.user_id}") from e
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT session_id, user_id, expires_at FROM sessions WHERE session_id = %s",
                (session_id,),
            ).fetchone()
        if not row:
            return None
        sid, user_id, expires_at = row
        return Session(session_id=str(sid), user_id=str(user_id), expires_at=as_utc(expires_at))

    def delete_session(self, session_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE session_id = %s", (session_id,))
            return (cur.rowcount or 0) > 0
