from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

# Provider name -> User attribute holding that provider's account id.
PROVIDER_ID_FIELDS: Dict[str, str] = {
    "google": "google_id",
    "discord": "discord_id",
    "github": "github_id",
}


@dataclass
class User:
    """Local identity record. Each non-null identifier is unique across users."""

    id: str
    username: Optional[str] = None
    google_id: Optional[str] = None
    discord_id: Optional[str] = None
    github_id: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def provider_id(self, provider: str) -> Optional[str]:
        return getattr(self, PROVIDER_ID_FIELDS[provider])

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "providers": sorted(p for p in PROVIDER_ID_FIELDS if self.provider_id(p)),
        }


@dataclass(frozen=True)
class Session:
    """Server-side session; `session_id` is the bearer secret carried by the cookie."""

    session_id: str
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class OAuthTransaction:
    """Cookie-carried state for one login attempt. Missing values are None."""

    state: Optional[str] = None
    code_verifier: Optional[str] = None
    redirect_uri: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: Optional[str] = None


@dataclass(frozen=True)
class ProviderIdentity:
    """A provider's view of the user, normalized across providers."""

    provider: str
    provider_user_id: str
    email: Optional[str] = None
    email_verified: bool = False

    @property
    def verified_email(self) -> Optional[str]:
        return self.email if (self.email and self.email_verified) else None


class FailureReason(str, Enum):
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class AuthError:
    """Expected failure of an auth step, returned rather than raised."""

    error: str
    http_status: int
    reason: FailureReason

    @classmethod
    def bad_request(cls, error: str) -> "AuthError":
        return cls(error=error, http_status=400, reason=FailureReason.BAD_REQUEST)

    @classmethod
    def server_error(cls, error: str) -> "AuthError":
        return cls(error=error, http_status=500, reason=FailureReason.SERVER_ERROR)

    @classmethod
    def conflict(cls, error: str) -> "AuthError":
        return cls(error=error, http_status=409, reason=FailureReason.CONFLICT)


class LoginState(str, Enum):
    INITIATED = "initiated"
    CODE_RECEIVED = "code_received"
    STATE_VALIDATED = "state_validated"
    TOKEN_EXCHANGED = "token_exchanged"
    IDENTITY_RESOLVED = "identity_resolved"
    SESSION_CREATED = "session_created"
    FAILED = "failed"


@dataclass(frozen=True)
class RequestContext:
    """What an auth handler may read from the inbound request."""

    cookies: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class AuthResponse:
    """
    What an auth handler wants sent back.

    `cookies` is the ordered list of `Response.set_cookie(**kwargs)` payloads, flushed once by the HTTP layer.
    """

    status_code: int
    location: Optional[str] = None
    body: Optional[str] = None
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    user: Optional[User] = None
    error: Optional[AuthError] = None
    transitions: List[LoginState] = field(default_factory=list)
