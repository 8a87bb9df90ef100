from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Optional, Tuple
from urllib.parse import urlparse

PKCE_METHOD = "S256"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_hex(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def new_state() -> str:
    """CSRF correlator for one authorization request (16 random bytes, hex)."""
    return random_hex(16)


def pkce_challenge(verifier: str) -> str:
    """
    Generate PKCE challenge from verifier using SHA256.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def new_pkce_pair() -> Tuple[str, str]:
    """Return (verifier, challenge). 32 random bytes hex -> 64 chars, within RFC 7636's 43..128."""
    verifier = random_hex(32)
    return verifier, pkce_challenge(verifier)


def fingerprint(secret: str) -> str:
    """Short, non-reversible tag for logging bearer values (session ids)."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects: allow only relative paths like `/recipes`.
    """
    # Control characters go first so they can't hide a `//` prefix.
    p = (next_path or "").replace("\r", "").replace("\n", "").replace("\t", "").strip()
    if not p.startswith("/"):
        return "/"
    # Disallow scheme-relative: `//evil.com`
    if p.startswith("//") or p.startswith("/\\"):
        return "/"
    return p


def same_origin_path(url: Optional[str], public_base_url: Optional[str]) -> Optional[str]:
    """
    Reduce an absolute URL (e.g. a Referer) to its path if it points at our own origin.
    """
    if not url or not public_base_url:
        return None
    target = urlparse(url)
    base = urlparse(public_base_url)
    if not target.scheme or target.scheme != base.scheme or target.netloc != base.netloc:
        return None
    path = target.path or "/"
    if target.query:
        path = f"{path}?{target.query}"
    return sanitize_next_path(path)
