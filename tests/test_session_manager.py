from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from lawlzer.auth.session import SessionManager
from lawlzer.auth.models import User
from lawlzer.storage.memory_store import InMemoryAuthStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _setup(ttl_seconds: int = 604800):
    store = InMemoryAuthStore()
    store.create_user(User(id="u1"))
    clock = _Clock()
    return store, clock, SessionManager(store, ttl_seconds=ttl_seconds, now=clock)


def test_create_issues_opaque_id_with_seven_day_expiry() -> None:
    store, clock, sessions = _setup()
    s = sessions.create("u1")
    assert re.match(r"^[0-9a-f]{64}$", s.session_id)
    assert s.user_id == "u1"
    assert s.expires_at == clock.now + timedelta(days=7)
    assert store.get_session(s.session_id) == s


def test_session_ids_are_unique() -> None:
    _, _, sessions = _setup()
    assert sessions.create("u1").session_id != sessions.create("u1").session_id


def test_validate_before_expiry() -> None:
    _, clock, sessions = _setup()
    s = sessions.create("u1")
    clock.now += timedelta(days=6, hours=23)
    assert sessions.validate(s.session_id) == s


def test_expired_session_is_deleted_exactly_once() -> None:
    store, clock, sessions = _setup()
    s = sessions.create("u1")
    store.delete_session = MagicMock(wraps=store.delete_session)

    clock.now = s.expires_at
    assert sessions.validate(s.session_id) is None
    assert sessions.validate(s.session_id) is None
    assert store.delete_session.call_count == 1
    assert store.get_session(s.session_id) is None


def test_validate_unknown_or_missing_id() -> None:
    _, _, sessions = _setup()
    assert sessions.validate(None) is None
    assert sessions.validate("") is None
    assert sessions.validate("nope") is None


def test_invalidate_is_idempotent() -> None:
    _, _, sessions = _setup()
    s = sessions.create("u1")
    sessions.invalidate(s.session_id)
    sessions.invalidate(s.session_id)
    sessions.invalidate(None)
    assert sessions.validate(s.session_id) is None


def test_ttl_is_configurable() -> None:
    _, clock, sessions = _setup(ttl_seconds=60)
    assert sessions.ttl_seconds == 60
    s = sessions.create("u1")
    assert s.expires_at == clock.now + timedelta(seconds=60)
