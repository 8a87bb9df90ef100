"""Post-login account setup (choosing a username once)."""

from __future__ import annotations

import logging
import re

from lawlzer.auth.models import User
from lawlzer.storage.base import AuthStore, UniquenessConflict

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,16}$")


class AccountSetupError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def set_username(store: AuthStore, user: User, username: str) -> User:
    """
    Assign a username to a user who has none yet.

    Raises:
        AccountSetupError: 400 for an invalid name or one already set, 409 when the name is taken
    """
    username = (username or "").strip()
    if not USERNAME_RE.match(username):
        raise AccountSetupError(
            "Username must be 3-16 characters: letters, numbers or underscores",
            400,
        )
    if user.username:
        raise AccountSetupError("Username already set", 400)

    owner = store.find_user_by_username(username)
    if owner is not None and owner.id != user.id:
        raise AccountSetupError("Username is already taken", 409)
    try:
        updated = store.update_user(user.id, username=username)
    except UniquenessConflict as e:
        if e.field != "username":
            raise
        raise AccountSetupError("Username is already taken", 409) from e
    logger.info("User %s chose a username", user.id)
    return updated
