"""
Login orchestration: begin, complete, read current user, logout.

A callback walks INITIATED -> CODE_RECEIVED -> STATE_VALIDATED -> TOKEN_EXCHANGED -> IDENTITY_RESOLVED
-> SESSION_CREATED, or stops in FAILED. Every callback response clears the transaction cookies, whatever
the outcome.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

from lawlzer.auth.config import AuthConfig
from lawlzer.auth.cookies import (
    clear_session,
    clear_transaction,
    read_session,
    read_transaction,
    write_session,
    write_transaction,
)
from lawlzer.auth.identity import IdentityConflict, IdentityResolver
from lawlzer.auth.models import (
    AuthError,
    AuthResponse,
    LoginState,
    OAuthTransaction,
    RequestContext,
    Session,
    User,
)
from lawlzer.auth.providers import OAuthProvider
from lawlzer.auth.session import SessionManager
from lawlzer.auth.util import fingerprint, same_origin_path, sanitize_next_path
from lawlzer.storage.base import AuthStore, StoreError

logger = logging.getLogger(__name__)

_Completed = Union[Tuple[User, Session], AuthError]


class LoginFlow:
    def __init__(
        self,
        cfg: AuthConfig,
        store: AuthStore,
        providers: Dict[str, OAuthProvider],
        *,
        sessions: Optional[SessionManager] = None,
        resolver: Optional[IdentityResolver] = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.providers = providers
        self.sessions = sessions or SessionManager(store, ttl_seconds=cfg.session_ttl_seconds)
        self.resolver = resolver or IdentityResolver(store)

    def provider(self, name: str) -> OAuthProvider:
        """Raises KeyError when the provider is unknown or not configured."""
        return self.providers[name]

    def _post_login_target(self, ctx: RequestContext) -> str:
        next_path = (ctx.query.get("next") or "").strip()
        if next_path:
            return sanitize_next_path(next_path)
        referer = ctx.headers.get("referer")
        return same_origin_path(referer, self.cfg.public_base_url) or "/"

    def begin_login(self, provider_name: str, ctx: RequestContext) -> AuthResponse:
        provider = self.provider(provider_name)
        auth = provider.begin_auth()
        cookies = write_transaction(
            self.cfg,
            state=auth.state,
            code_verifier=auth.code_verifier,
            redirect_uri=self._post_login_target(ctx),
        )
        logger.info("Starting %s login", provider.display_name)
        return AuthResponse(
            status_code=302,
            location=auth.url,
            cookies=cookies,
            transitions=[LoginState.INITIATED],
        )

    def complete_login(self, provider_name: str, ctx: RequestContext) -> AuthResponse:
        provider = self.provider(provider_name)
        txn = read_transaction(self.cfg, ctx.cookies)
        transitions: List[LoginState] = [LoginState.INITIATED]

        try:
            result = self._complete(provider, ctx, txn, transitions)
        except Exception:
            # Outer boundary: anything unexpected (e.g. store unreachable) becomes a generic failure.
            logger.exception("Unexpected error during %s login callback", provider.display_name)
            result = AuthError.server_error(f"Internal server error during {provider.display_name} login")

        if isinstance(result, AuthError):
            logger.warning(
                "%s login failed after %s: %s (status=%d)",
                provider.display_name,
                transitions[-1].value,
                result.error,
                result.http_status,
            )
            transitions.append(LoginState.FAILED)
            return AuthResponse(
                status_code=result.http_status,
                body=f"{provider.display_name} login failed: {result.error}",
                cookies=clear_transaction(self.cfg),
                error=result,
                transitions=transitions,
            )

        user, session = result
        destination = (txn.redirect_uri or "/") if user.username else self.cfg.setup_account_path
        logger.info("%s login succeeded for user %s", provider.display_name, user.id)
        return AuthResponse(
            status_code=302,
            location=destination,
            cookies=[write_session(self.cfg, session.session_id)] + clear_transaction(self.cfg),
            user=user,
            transitions=transitions,
        )

    def _complete(
        self,
        provider: OAuthProvider,
        ctx: RequestContext,
        txn: OAuthTransaction,
        transitions: List[LoginState],
    ) -> _Completed:
        code = (ctx.query.get("code") or "").strip()
        err = provider.code_error(code)
        if err is not None:
            return err
        transitions.append(LoginState.CODE_RECEIVED)

        err = provider.state_error(ctx.query.get("state"), txn.state, txn.code_verifier)
        if err is not None:
            return err
        transitions.append(LoginState.STATE_VALIDATED)

        tokens = provider.exchange_code(code, txn.code_verifier)
        if isinstance(tokens, AuthError):
            return tokens
        transitions.append(LoginState.TOKEN_EXCHANGED)

        identity = provider.fetch_identity(tokens)
        if isinstance(identity, AuthError):
            return identity

        try:
            user = self.resolver.resolve(identity)
        except IdentityConflict as e:
            logger.warning("%s identity conflict: %s", provider.display_name, e)
            return AuthError.conflict("This account is already in use; please try again")
        except StoreError as e:
            logger.error("Failed to persist %s user: %s", provider.display_name, e)
            return AuthError.server_error("Failed to save user")
        transitions.append(LoginState.IDENTITY_RESOLVED)

        try:
            session = self.sessions.create(user.id)
        except StoreError as e:
            logger.error("Failed to create session for user %s: %s", user.id, e)
            return AuthError.server_error("Failed to create session")
        transitions.append(LoginState.SESSION_CREATED)
        return user, session

    def current_user(self, ctx: RequestContext) -> Optional[User]:
        session = self.sessions.validate(read_session(ctx.cookies))
        if session is None:
            return None
        return self.store.get_user(session.user_id)

    def logout(self, ctx: RequestContext) -> AuthResponse:
        session_id = read_session(ctx.cookies)
        if session_id:
            try:
                self.sessions.invalidate(session_id)
            except Exception:
                # The cookie is cleared regardless; a leftover row expires on its own.
                logger.exception("Error invalidating session %s", fingerprint(session_id))
        else:
            logger.debug("Logout without a session cookie")
        return AuthResponse(status_code=302, location="/", cookies=[clear_session(self.cfg)])
