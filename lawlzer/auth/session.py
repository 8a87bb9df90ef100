from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from lawlzer.auth.config import DEFAULT_SESSION_TTL_SECONDS
from lawlzer.auth.models import Session
from lawlzer.auth.util import fingerprint, random_hex
from lawlzer.core.clock import as_utc, utcnow
from lawlzer.storage.base import AuthStore

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Create, validate and invalidate server-side sessions.

    Expired sessions are deleted by the first `validate` that observes them; nothing sweeps in the background.
    """

    def __init__(
        self,
        store: AuthStore,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._now = now

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, user_id: str) -> Session:
        session = Session(
            session_id=random_hex(32),
            user_id=user_id,
            expires_at=self._now() + self._ttl,
        )
        self._store.create_session(session)
        logger.info("Created session %s for user %s", fingerprint(session.session_id), user_id)
        return session

    def validate(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        session = self._store.get_session(session_id)
        if session is None:
            return None
        if as_utc(session.expires_at) <= self._now():
            self._store.delete_session(session_id)
            logger.info("Session %s expired; deleted", fingerprint(session_id))
            return None
        return session

    def invalidate(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        if self._store.delete_session(session_id):
            logger.info("Invalidated session %s", fingerprint(session_id))
