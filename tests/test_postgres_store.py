from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, List, Optional

import psycopg
import pytest

from lawlzer.auth.models import Session, User
from lawlzer.storage.base import StoreError, UniquenessConflict
from lawlzer.storage.postgres_store import PostgresAuthStore


class _UniqueEmail(psycopg.errors.UniqueViolation):
    diag = SimpleNamespace(constraint_name="users_email_key")


class _FakeCursor:
    def __init__(self, row: Optional[tuple] = None, rowcount: int = 0) -> None:
        self._row = row
        self.rowcount = rowcount

    def fetchone(self):
        return self._row


class _FakeConn:
    """Records SQL; answers each execute from a queue (a cursor, or an exception to raise)."""

    def __init__(self, *results: Any) -> None:
        self.results: List[Any] = list(results)
        self.executed: List[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.executed.append((" ".join(str(sql).split()), params))
        result = self.results.pop(0) if self.results else _FakeCursor()
        if isinstance(result, Exception):
            raise result
        return result


def _store(conn: _FakeConn) -> PostgresAuthStore:
    store = PostgresAuthStore(dsn="postgresql://test")
    store._connect = lambda: conn  # type: ignore[method-assign]
    return store


_ROW = ("u1", None, "g1", None, None, "a@example.com", datetime(2024, 1, 1, tzinfo=timezone.utc), None)


def test_find_user_by_provider_id_maps_row() -> None:
    conn = _FakeConn(_FakeCursor(_ROW))
    user = _store(conn).find_user_by_provider_id("google", "g1")
    assert user == User(id="u1", google_id="g1", email="a@example.com", created_at=_ROW[6])
    sql, params = conn.executed[0]
    assert "WHERE google_id = %s" in sql
    assert params == ("g1",)


def test_missing_user_is_none() -> None:
    assert _store(_FakeConn(_FakeCursor(None))).get_user("nope") is None


def test_create_user_unique_violation_names_the_field() -> None:
    conn = _FakeConn(_UniqueEmail("duplicate key value violates unique constraint"))
    with pytest.raises(UniquenessConflict) as exc:
        _store(conn).create_user(User(id="u2", email="a@example.com"))
    assert exc.value.field == "email"


def test_update_user_only_touches_allowed_columns() -> None:
    conn = _FakeConn(_FakeCursor(_ROW))
    _store(conn).update_user("u1", discord_id="d1")
    sql, params = conn.executed[0]
    assert "SET discord_id = %s, updated_at = now()" in sql
    assert params == ["d1", "u1"]

    with pytest.raises(ValueError):
        _store(_FakeConn()).update_user("u1", id="evil")


def test_update_missing_user_raises() -> None:
    with pytest.raises(StoreError):
        _store(_FakeConn(_FakeCursor(None))).update_user("missing", email="x@example.com")


def test_get_session_normalizes_naive_timestamps() -> None:
    naive = datetime(2030, 1, 1, 12, 0)
    session = _store(_FakeConn(_FakeCursor(("s1", "u1", naive)))).get_session("s1")
    assert session == Session(session_id="s1", user_id="u1", expires_at=naive.replace(tzinfo=timezone.utc))


def test_create_session_for_unknown_user() -> None:
    conn = _FakeConn(psycopg.errors.ForeignKeyViolation("no such user"))
    s = Session(session_id="s1", user_id="ghost", expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(StoreError):
        _store(conn).create_session(s)


def test_delete_session_reports_rowcount() -> None:
    assert _store(_FakeConn(_FakeCursor(rowcount=1))).delete_session("s1") is True
    assert _store(_FakeConn(_FakeCursor(rowcount=0))).delete_session("s1") is False
