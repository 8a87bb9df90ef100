"""
Map a provider identity onto a local User.

Resolution order:
1. provider id match (authoritative; may refresh the stored email)
2. verified email match -> link this provider to that user
3. create a new user

Email is only a correlation key for the first login through a provider; once a provider id is
attached it always wins.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from lawlzer.auth.models import PROVIDER_ID_FIELDS, ProviderIdentity, User
from lawlzer.storage.base import AuthStore, UniquenessConflict

logger = logging.getLogger(__name__)


class IdentityConflict(Exception):
    """A concurrent write claimed this identity and re-reading could not reconcile it."""


def _new_user_id() -> str:
    return uuid.uuid4().hex


class IdentityResolver:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def resolve(self, identity: ProviderIdentity) -> User:
        user = self._store.find_user_by_provider_id(identity.provider, identity.provider_user_id)
        if user is not None:
            return self._maybe_refresh_email(user, identity.verified_email)

        verified_email = identity.verified_email
        try:
            if verified_email:
                linked = self._link_by_email(identity, verified_email)
                if linked is not None:
                    return linked
            return self._create(identity, verified_email)
        except UniquenessConflict as e:
            logger.info(
                "User create for %s raced on %s; re-reading",
                identity.provider,
                e.field,
            )
            return self._resolve_after_conflict(identity, verified_email)

    def _maybe_refresh_email(self, user: User, verified_email: Optional[str]) -> User:
        if not verified_email or user.email == verified_email:
            return user
        owner = self._store.find_user_by_email(verified_email)
        if owner is not None and owner.id != user.id:
            logger.warning(
                "Not updating email for user %s: address already belongs to user %s",
                user.id,
                owner.id,
            )
            return user
        try:
            return self._store.update_user(user.id, email=verified_email)
        except UniquenessConflict:
            logger.warning("Not updating email for user %s: address was claimed concurrently", user.id)
            return self._store.get_user(user.id) or user

    def _link_by_email(self, identity: ProviderIdentity, verified_email: str) -> Optional[User]:
        owner = self._store.find_user_by_email(verified_email)
        if owner is None:
            return None
        existing = owner.provider_id(identity.provider)
        if existing and existing != identity.provider_user_id:
            # Another account of this provider already owns the user; never overwrite it.
            logger.warning(
                "Not linking %s account to user %s: a different %s account is already attached",
                identity.provider,
                owner.id,
                identity.provider,
            )
            return None
        field = PROVIDER_ID_FIELDS[identity.provider]
        user = self._store.update_user(owner.id, **{field: identity.provider_user_id})
        logger.info("Linked %s account to existing user %s by verified email", identity.provider, user.id)
        return user

    def _create(self, identity: ProviderIdentity, verified_email: Optional[str]) -> User:
        field = PROVIDER_ID_FIELDS[identity.provider]
        email = verified_email
        if email and self._store.find_user_by_email(email) is not None:
            # Email belongs to an account we refused to link; the new user starts without one.
            email = None
        user = User(id=_new_user_id(), email=email, **{field: identity.provider_user_id})
        created = self._store.create_user(user)
        logger.info("Created user %s from %s login", created.id, identity.provider)
        return created

    def _resolve_after_conflict(self, identity: ProviderIdentity, verified_email: Optional[str]) -> User:
        user = self._store.find_user_by_provider_id(identity.provider, identity.provider_user_id)
        if user is not None:
            return user
        if verified_email:
            try:
                linked = self._link_by_email(identity, verified_email)
            except UniquenessConflict as e:
                raise IdentityConflict(f"{identity.provider} identity conflict on {e.field}") from e
            if linked is not None:
                return linked
        raise IdentityConflict(f"{identity.provider} identity is already claimed")
