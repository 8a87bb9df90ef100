from __future__ import annotations

import hmac
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from lawlzer.auth.config import AuthConfig, ProviderCredentials
from lawlzer.auth.models import AuthError, AuthorizationRequest, ProviderIdentity
from lawlzer.auth.util import PKCE_METHOD, new_pkce_pair, new_state

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

DISCORD_AUTH_URL = "https://discord.com/api/oauth2/authorize"
DISCORD_TOKEN_URL = "https://discord.com/api/oauth2/token"
DISCORD_USER_URL = "https://discord.com/api/users/@me"

GITHUB_AUTH_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_EMAILS_URL = "https://api.github.com/user/emails"

JWKS_CACHE_SECONDS = 3600

TokenResult = Union[Dict[str, Any], AuthError]
IdentityResult = Union[ProviderIdentity, AuthError]


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


def _clean_email(value: Any) -> Optional[str]:
    email = str(value or "").strip()
    return email if "@" in email else None


class OAuthProvider:
    """
    Authorization-code flow against one provider.

    Subclasses set the endpoints and implement `fetch_identity`. HTTP goes through `http.request(...)`
    (the `requests` module by default) with a bounded timeout; every expected failure comes back as
    an AuthError instead of an exception.
    """

    name = ""
    display_name = ""
    uses_pkce = False
    authorize_url = ""
    token_url = ""
    scope = ""

    def __init__(self, credentials: ProviderCredentials, *, timeout: float = 10.0, http: Any = None) -> None:
        self.credentials = credentials
        self.timeout = timeout
        self._http = http if http is not None else requests

    # ---- authorization request ----

    def authorize_params(self, *, state: str, code_challenge: Optional[str]) -> Dict[str, str]:
        params = {
            "client_id": self.credentials.client_id or "",
            "redirect_uri": self.credentials.redirect_uri or "",
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = PKCE_METHOD
        return params

    def begin_auth(self) -> AuthorizationRequest:
        state = new_state()
        verifier: Optional[str] = None
        challenge: Optional[str] = None
        if self.uses_pkce:
            verifier, challenge = new_pkce_pair()
        params = self.authorize_params(state=state, code_challenge=challenge)
        return AuthorizationRequest(url=f"{self.authorize_url}?{urlencode(params)}", state=state, code_verifier=verifier)

    # ---- callback ----

    def code_error(self, code: Optional[str]) -> Optional[AuthError]:
        if not (code or "").strip():
            return AuthError.bad_request("Missing code parameter")
        return None

    def state_error(
        self,
        state: Optional[str],
        stored_state: Optional[str],
        stored_verifier: Optional[str] = None,
    ) -> Optional[AuthError]:
        state = (state or "").strip()
        if not state or not stored_state or not hmac.compare_digest(state.encode("utf-8"), stored_state.encode("utf-8")):
            return AuthError.bad_request("Invalid state parameter")
        if self.uses_pkce and not stored_verifier:
            return AuthError.bad_request("Missing code verifier")
        return None

    def complete_auth(
        self,
        code: Optional[str],
        state: Optional[str],
        stored_state: Optional[str],
        stored_verifier: Optional[str] = None,
    ) -> IdentityResult:
        err = self.state_error(state, stored_state, stored_verifier) or self.code_error(code)
        if err is not None:
            return err
        tokens = self.exchange_code(str(code), stored_verifier)
        if isinstance(tokens, AuthError):
            return tokens
        return self.fetch_identity(tokens)

    # ---- token exchange ----

    def token_request_data(self, code: str, code_verifier: Optional[str]) -> Dict[str, str]:
        data = {
            "client_id": self.credentials.client_id or "",
            "client_secret": self.credentials.client_secret or "",
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.credentials.redirect_uri or "",
        }
        if self.uses_pkce and code_verifier:
            data["code_verifier"] = code_verifier
        return data

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenResult:
        data = self._send_json(
            "POST",
            self.token_url,
            what="token exchange",
            data=self.token_request_data(code, code_verifier),
            headers={"Accept": "application/json"},
        )
        if not isinstance(data, dict) or not data.get("access_token"):
            if isinstance(data, dict) and data.get("error"):
                # OAuth error codes are short and carry no secrets.
                logger.warning("%s token exchange rejected: %s", self.display_name, str(data.get("error"))[:64])
            return AuthError.server_error("Failed to exchange authorization code for token")
        return data

    def fetch_identity(self, tokens: Dict[str, Any]) -> IdentityResult:
        raise NotImplementedError

    # ---- http ----

    def _bearer_headers(self, tokens: Dict[str, Any]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {tokens.get('access_token')}"}

    def _send_json(self, method: str, url: str, *, what: str, **kwargs: Any) -> Optional[Any]:
        """Return the parsed JSON body of a 2xx response, or None (after logging) on any failure."""
        kwargs.setdefault("timeout", self.timeout)
        try:
            r = self._http.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s request failed: %s", self.display_name, what, e.__class__.__name__)
            return None
        if not 200 <= r.status_code < 300:
            # Avoid leaking provider error bodies; the status is enough to diagnose.
            logger.warning("%s %s failed (status=%s)", self.display_name, what, r.status_code)
            return None
        try:
            return r.json()
        except ValueError:
            logger.warning("%s %s returned a non-JSON body", self.display_name, what)
            return None


class GoogleProvider(OAuthProvider):
    name = "google"
    display_name = "Google"
    uses_pkce = True
    authorize_url = GOOGLE_AUTH_URL
    token_url = GOOGLE_TOKEN_URL
    scope = "openid profile email"

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        timeout: float = 10.0,
        http: Any = None,
        verify_id_token: bool = True,
    ) -> None:
        super().__init__(credentials, timeout=timeout, http=http)
        self.verify_id_token = verify_id_token
        self._jwks: Tuple[float, Optional[Dict[str, Any]]] = (0.0, None)

    def authorize_params(self, *, state: str, code_challenge: Optional[str]) -> Dict[str, str]:
        params = super().authorize_params(state=state, code_challenge=code_challenge)
        params["access_type"] = "offline"  # ask for a refresh token
        params["prompt"] = "select_account"
        return params

    def fetch_identity(self, tokens: Dict[str, Any]) -> IdentityResult:
        claims: Optional[Dict[str, Any]] = None
        id_token = str(tokens.get("id_token") or "").strip()
        if id_token:
            try:
                claims = self._id_token_claims(id_token)
            except (jwt.PyJWTError, ValueError) as e:
                logger.warning("Google identity token rejected: %s", e)
                return AuthError.server_error("Failed to get user information from Google")
        else:
            # No identity token: fall back to the userinfo endpoint.
            info = self._send_json("GET", GOOGLE_USERINFO_URL, what="user info", headers=self._bearer_headers(tokens))
            if not isinstance(info, dict):
                return AuthError.server_error("Failed to fetch user info from Google")
            claims = info

        sub = str(claims.get("sub") or "").strip()
        if not sub:
            return AuthError.server_error("Failed to get user information from Google")
        return ProviderIdentity(
            provider=self.name,
            provider_user_id=sub,
            email=_clean_email(claims.get("email")),
            email_verified=_truthy(claims.get("email_verified")),
        )

    def _id_token_claims(self, id_token: str) -> Dict[str, Any]:
        if not self.verify_id_token:
            # Decode-only (AUTH_GOOGLE_VERIFY_ID_TOKEN=0): the signature is not checked.
            claims = jwt.decode(id_token, options={"verify_signature": False})
        else:
            claims = self._verified_claims(id_token)
        if not isinstance(claims, dict):
            raise ValueError("Invalid ID token claims")
        return claims

    def _verified_claims(self, id_token: str) -> Dict[str, Any]:
        """
        Validate the identity token:
        - signature against Google's published keys (JWKS, RS256)
        - audience is our client id, issuer is Google
        """
        hdr = jwt.get_unverified_header(id_token)
        kid = str(hdr.get("kid") or "")
        if not kid:
            raise ValueError("ID token missing kid")

        jwk = self._find_jwk(kid, refresh=False) or self._find_jwk(kid, refresh=True)
        if jwk is None:
            raise ValueError("Unknown signing key (kid)")
        key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))

        claims = jwt.decode(
            id_token,
            key=key,
            algorithms=["RS256"],
            audience=self.credentials.client_id,
            options={"require": ["exp", "iat", "iss", "aud", "sub"]},
        )
        if str(claims.get("iss") or "") not in GOOGLE_ISSUERS:
            raise ValueError("Invalid issuer")
        return claims

    def _find_jwk(self, kid: str, *, refresh: bool) -> Optional[Dict[str, Any]]:
        keys = self._get_jwks(refresh=refresh).get("keys")
        if not isinstance(keys, list):
            raise ValueError("Invalid JWKS keys")
        for k in keys:
            if isinstance(k, dict) and str(k.get("kid") or "") == kid:
                return k
        return None

    def _get_jwks(self, *, refresh: bool) -> Dict[str, Any]:
        """Google's signing keys, cached for an hour per provider instance."""
        ts, cached = self._jwks
        now = time.time()
        if not refresh and cached is not None and now - ts < JWKS_CACHE_SECONDS:
            return cached
        data = self._send_json("GET", GOOGLE_JWKS_URL, what="signing keys fetch")
        if not isinstance(data, dict):
            raise ValueError("Unable to fetch Google signing keys")
        self._jwks = (now, data)
        return data


class DiscordProvider(OAuthProvider):
    name = "discord"
    display_name = "Discord"
    authorize_url = DISCORD_AUTH_URL
    token_url = DISCORD_TOKEN_URL
    scope = "identify email"

    def authorize_params(self, *, state: str, code_challenge: Optional[str]) -> Dict[str, str]:
        params = super().authorize_params(state=state, code_challenge=code_challenge)
        params["prompt"] = "consent"
        return params

    def fetch_identity(self, tokens: Dict[str, Any]) -> IdentityResult:
        info = self._send_json("GET", DISCORD_USER_URL, what="user info", headers=self._bearer_headers(tokens))
        if not isinstance(info, dict):
            return AuthError.server_error("Failed to fetch user info from Discord")
        user_id = str(info.get("id") or "").strip()
        if not user_id:
            return AuthError.server_error("Failed to get user information from Discord")
        return ProviderIdentity(
            provider=self.name,
            provider_user_id=user_id,
            email=_clean_email(info.get("email")),
            email_verified=_truthy(info.get("verified")),
        )


class GitHubProvider(OAuthProvider):
    name = "github"
    display_name = "GitHub"
    authorize_url = GITHUB_AUTH_URL
    token_url = GITHUB_TOKEN_URL
    scope = "read:user user:email"

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        timeout: float = 10.0,
        http: Any = None,
        user_agent: str = "LawlzerApp",
    ) -> None:
        super().__init__(credentials, timeout=timeout, http=http)
        self.user_agent = user_agent

    def authorize_params(self, *, state: str, code_challenge: Optional[str]) -> Dict[str, str]:
        params = super().authorize_params(state=state, code_challenge=code_challenge)
        params.pop("response_type", None)
        return params

    def token_request_data(self, code: str, code_verifier: Optional[str]) -> Dict[str, str]:
        data = super().token_request_data(code, code_verifier)
        data.pop("grant_type", None)
        return data

    def _api_headers(self, tokens: Dict[str, Any]) -> Dict[str, str]:
        headers = self._bearer_headers(tokens)
        # GitHub API requires a User-Agent.
        headers["User-Agent"] = self.user_agent
        headers["Accept"] = "application/vnd.github+json"
        headers["X-GitHub-Api-Version"] = "2022-11-28"
        return headers

    def fetch_identity(self, tokens: Dict[str, Any]) -> IdentityResult:
        headers = self._api_headers(tokens)
        info = self._send_json("GET", GITHUB_USER_URL, what="user info", headers=headers)
        if not isinstance(info, dict):
            return AuthError.server_error("Failed to fetch user information from GitHub")
        # Numeric id, stored as a string.
        user_id = str(info.get("id") or "").strip()
        if not user_id:
            return AuthError.server_error("Failed to get user information from GitHub")

        # Profile email may be hidden; the emails endpoint is the source of truth. Login proceeds without it.
        primary_email: Optional[str] = None
        emails = self._send_json("GET", GITHUB_EMAILS_URL, what="email list", headers=headers)
        if isinstance(emails, list):
            primary_email = self._primary_verified_email(emails)

        return ProviderIdentity(
            provider=self.name,
            provider_user_id=user_id,
            email=primary_email,
            email_verified=primary_email is not None,
        )

    @staticmethod
    def _primary_verified_email(emails: List[Any]) -> Optional[str]:
        for e in emails:
            if isinstance(e, dict) and e.get("primary") is True and e.get("verified") is True:
                return _clean_email(e.get("email"))
        return None


def build_providers(cfg: AuthConfig, *, http: Any = None) -> Dict[str, OAuthProvider]:
    """Instantiate every provider that has credentials configured."""
    timeout = cfg.provider_timeout_seconds
    candidates: List[OAuthProvider] = [
        GoogleProvider(cfg.google, timeout=timeout, http=http, verify_id_token=cfg.google_verify_id_token),
        DiscordProvider(cfg.discord, timeout=timeout, http=http),
        GitHubProvider(cfg.github, timeout=timeout, http=http, user_agent=cfg.github_user_agent),
    ]
    return {p.name: p for p in candidates if p.credentials.enabled}
