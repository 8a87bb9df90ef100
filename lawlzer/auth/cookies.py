from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from lawlzer.auth.config import AuthConfig
from lawlzer.auth.models import OAuthTransaction
from lawlzer.auth.util import sanitize_next_path

STATE_COOKIE_NAME = "oauth_state"
CODE_VERIFIER_COOKIE_NAME = "google_code_verifier"
REDIRECT_URI_COOKIE_NAME = "oauth_redirect_uri"
SESSION_COOKIE_NAME = "auth_session"

TRANSACTION_COOKIE_NAMES = (STATE_COOKIE_NAME, CODE_VERIFIER_COOKIE_NAME, REDIRECT_URI_COOKIE_NAME)

TRANSACTION_SALT = "lawlzer-oauth-transaction-v1"


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=TRANSACTION_SALT)


def _cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> Dict[str, Any]:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def _encode_value(cfg: AuthConfig, value: str) -> str:
    s = _serializer(cfg)
    if s is None:
        return value
    return s.dumps(value)


def _decode_value(cfg: AuthConfig, raw: Optional[str]) -> Optional[str]:
    raw = (raw or "").strip()
    if not raw:
        return None
    s = _serializer(cfg)
    if s is None:
        return raw
    try:
        value = s.loads(raw, max_age=cfg.transaction_ttl_seconds)
    except (BadSignature, BadTimeSignature):
        return None
    if not isinstance(value, str) or not value:
        return None
    return value


def write_transaction(
    cfg: AuthConfig,
    *,
    state: str,
    redirect_uri: str,
    code_verifier: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """One short-lived cookie per transaction value; the verifier cookie only for PKCE providers."""
    ttl = cfg.transaction_ttl_seconds
    out = [_cookie_kwargs(cfg, key=STATE_COOKIE_NAME, value=_encode_value(cfg, state), max_age=ttl)]
    if code_verifier:
        out.append(
            _cookie_kwargs(cfg, key=CODE_VERIFIER_COOKIE_NAME, value=_encode_value(cfg, code_verifier), max_age=ttl)
        )
    out.append(
        _cookie_kwargs(
            cfg,
            key=REDIRECT_URI_COOKIE_NAME,
            value=_encode_value(cfg, sanitize_next_path(redirect_uri)),
            max_age=ttl,
        )
    )
    return out


def read_transaction(cfg: AuthConfig, cookies: Mapping[str, str]) -> OAuthTransaction:
    """Pure lookup. Missing, blank or badly signed values come back as None."""
    redirect_uri = _decode_value(cfg, cookies.get(REDIRECT_URI_COOKIE_NAME))
    return OAuthTransaction(
        state=_decode_value(cfg, cookies.get(STATE_COOKIE_NAME)),
        code_verifier=_decode_value(cfg, cookies.get(CODE_VERIFIER_COOKIE_NAME)),
        redirect_uri=sanitize_next_path(redirect_uri) if redirect_uri else None,
    )


def clear_transaction(cfg: AuthConfig) -> List[Dict[str, Any]]:
    return [_cookie_kwargs(cfg, key=name, value="", max_age=0) for name in TRANSACTION_COOKIE_NAMES]


def write_session(cfg: AuthConfig, session_id: str) -> Dict[str, Any]:
    return _cookie_kwargs(cfg, key=SESSION_COOKIE_NAME, value=session_id, max_age=cfg.session_ttl_seconds)


def clear_session(cfg: AuthConfig) -> Dict[str, Any]:
    return _cookie_kwargs(cfg, key=SESSION_COOKIE_NAME, value="", max_age=0)


def read_session(cookies: Mapping[str, str]) -> Optional[str]:
    return (cookies.get(SESSION_COOKIE_NAME) or "").strip() or None
