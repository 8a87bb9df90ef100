from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

from lawlzer.core.env import env_bool, env_int, env_str

SUPPORTED_PROVIDERS = ("google", "discord", "github")

DEFAULT_SESSION_TTL_SECONDS = 60 * 60 * 24 * 7
DEFAULT_TRANSACTION_TTL_SECONDS = 60 * 10


@dataclass(frozen=True)
class ProviderCredentials:
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]

    @property
    def enabled(self) -> bool:
        """A provider is usable only with an id, a secret and somewhere to come back to."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)


@dataclass(frozen=True)
class AuthConfig:
    public_base_url: Optional[str]
    cookie_secure: bool
    session_secret: Optional[str]  # Signs transaction cookie values (optional)
    session_ttl_seconds: int
    transaction_ttl_seconds: int
    provider_timeout_seconds: float
    setup_account_path: str

    google: ProviderCredentials
    discord: ProviderCredentials
    github: ProviderCredentials

    google_verify_id_token: bool
    github_user_agent: str

    def credentials(self, provider: str) -> ProviderCredentials:
        creds: Dict[str, ProviderCredentials] = {
            "google": self.google,
            "discord": self.discord,
            "github": self.github,
        }
        if provider not in creds:
            raise KeyError(provider)
        return creds[provider]


def _load_credentials(provider: str, public_base_url: Optional[str]) -> ProviderCredentials:
    prefix = f"AUTH_{provider.upper()}"
    redirect_uri = env_str(f"{prefix}_REDIRECT_URI")
    if not redirect_uri and public_base_url:
        redirect_uri = f"{public_base_url}/login/{provider}/callback"
    return ProviderCredentials(
        client_id=env_str(f"{prefix}_CLIENT_ID"),
        client_secret=env_str(f"{prefix}_CLIENT_SECRET"),
        redirect_uri=redirect_uri,
    )


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    A provider is enabled when AUTH_<PROVIDER>_CLIENT_ID and AUTH_<PROVIDER>_CLIENT_SECRET are set
    and a callback URL is known (explicit AUTH_<PROVIDER>_REDIRECT_URI or derived from AUTH_PUBLIC_BASE_URL).
    """
    public_base_url = (env_str("AUTH_PUBLIC_BASE_URL") or "").rstrip("/") or None
    # Default: secure cookies when base URL is https; otherwise allow local dev.
    cookie_secure = env_bool("AUTH_COOKIE_SECURE", (public_base_url or "").startswith("https://"))

    timeout_raw = env_str("AUTH_PROVIDER_TIMEOUT_SECONDS") or "10"
    try:
        timeout = float(timeout_raw)
    except ValueError:
        timeout = 10.0
    if timeout <= 0:
        timeout = 10.0

    setup_path = env_str("AUTH_SETUP_ACCOUNT_PATH") or "/setup-account"
    if not setup_path.startswith("/"):
        setup_path = "/" + setup_path

    return AuthConfig(
        public_base_url=public_base_url,
        cookie_secure=cookie_secure,
        session_secret=env_str("AUTH_SESSION_SECRET"),
        session_ttl_seconds=env_int("AUTH_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS, minimum=60),
        transaction_ttl_seconds=env_int("AUTH_TRANSACTION_TTL_SECONDS", DEFAULT_TRANSACTION_TTL_SECONDS, minimum=60),
        provider_timeout_seconds=timeout,
        setup_account_path=setup_path,
        google=_load_credentials("google", public_base_url),
        discord=_load_credentials("discord", public_base_url),
        github=_load_credentials("github", public_base_url),
        google_verify_id_token=env_bool("AUTH_GOOGLE_VERIFY_ID_TOKEN", True),
        github_user_agent=env_str("AUTH_GITHUB_USER_AGENT") or "LawlzerApp",
    )
