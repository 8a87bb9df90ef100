from __future__ import annotations

from typing import Dict
from urllib.parse import parse_qs, urlparse

from fakes import make_config, unverified_id_token
from fastapi.testclient import TestClient

from lawlzer.api.server import create_app
from lawlzer.auth.config import ProviderCredentials
from lawlzer.auth.models import User
from lawlzer.auth.providers import GOOGLE_AUTH_URL, GOOGLE_TOKEN_URL, build_providers
from lawlzer.storage.memory_store import InMemoryAuthStore


def _client(fake_http, store=None, **cfg_overrides):
    cfg_overrides.setdefault("cookie_secure", False)
    cfg = make_config(**cfg_overrides)
    store = store if store is not None else InMemoryAuthStore()
    app = create_app(cfg=cfg, store=store, providers=build_providers(cfg, http=fake_http))
    return TestClient(app), store


def _set_cookies(r) -> Dict[str, str]:
    """name -> full Set-Cookie header."""
    out = {}
    for header in r.headers.get_list("set-cookie"):
        out[header.split("=", 1)[0]] = header
    return out


def _cookie_value(header: str) -> str:
    return header.split(";", 1)[0].split("=", 1)[1]


def _cookie_header(**cookies: str) -> Dict[str, str]:
    return {"cookie": "; ".join(f"{k}={v}" for k, v in cookies.items())}


def _login(client, fake_http, *, sub: str = "g-1", email: str = "ada@example.com") -> str:
    """Run a full Google login; return the session id."""
    begin = client.get("/login/google?next=/laws/7", follow_redirects=False)
    state = parse_qs(urlparse(begin.headers["location"]).query)["state"][0]
    verifier = _cookie_value(_set_cookies(begin)["google_code_verifier"])
    fake_http.add_json("POST", GOOGLE_TOKEN_URL, {"access_token": "at", "id_token": unverified_id_token(sub, email)})

    r = client.get(
        f"/login/google/callback?code=c1&state={state}",
        headers=_cookie_header(oauth_state=state, google_code_verifier=verifier, oauth_redirect_uri="/laws/7"),
        follow_redirects=False,
    )
    assert r.status_code == 302, r.text
    return _cookie_value(_set_cookies(r)["auth_session"])


def test_healthz(fake_http) -> None:
    client, _ = _client(fake_http)
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_providers_lists_enabled_only(fake_http) -> None:
    client, _ = _client(fake_http, github=ProviderCredentials(None, None, None))
    body = client.get("/api/auth/providers").json()
    assert body["ok"] is True
    assert body["providers"] == [
        {"name": "google", "displayName": "Google", "loginUrl": "/login/google"},
        {"name": "discord", "displayName": "Discord", "loginUrl": "/login/discord"},
    ]


def test_unknown_and_unconfigured_providers(fake_http) -> None:
    client, _ = _client(fake_http, github=ProviderCredentials("id", None, None))
    assert client.get("/login/myspace", follow_redirects=False).status_code == 404
    assert client.get("/login/github", follow_redirects=False).status_code == 403
    assert client.get("/login/github/callback?code=x&state=y", follow_redirects=False).status_code == 403


def test_callback_for_unusable_provider_still_clears_transaction(fake_http) -> None:
    client, _ = _client(fake_http, discord=ProviderCredentials(None, None, None))
    held = _cookie_header(oauth_state="stale", google_code_verifier="v", oauth_redirect_uri="/laws/7")

    for path, status in (("/login/discord/callback", 403), ("/login/myspace/callback", 404)):
        r = client.get(f"{path}?code=abc&state=stale", headers=held, follow_redirects=False)
        assert r.status_code == status
        assert "detail" in r.json()
        assert r.headers["cache-control"] == "no-store"
        cookies = _set_cookies(r)
        assert set(cookies) == {"oauth_state", "google_code_verifier", "oauth_redirect_uri"}
        assert all("Max-Age=0" in h for h in cookies.values())


def test_login_redirect_sets_transaction_cookies(fake_http) -> None:
    client, _ = _client(fake_http)
    r = client.get("/login/google?next=/laws/7", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith(GOOGLE_AUTH_URL)
    assert r.headers["cache-control"] == "no-store"

    cookies = _set_cookies(r)
    assert set(cookies) == {"oauth_state", "google_code_verifier", "oauth_redirect_uri"}
    for header in cookies.values():
        assert "HttpOnly" in header
        assert "SameSite=lax" in header
        assert "Path=/" in header
        assert "Max-Age=600" in header
        assert "Secure" not in header


def test_cookies_are_secure_when_configured(fake_http) -> None:
    client, _ = _client(fake_http, cookie_secure=True)
    r = client.get("/login/discord", follow_redirects=False)
    cookies = _set_cookies(r)
    assert set(cookies) == {"oauth_state", "oauth_redirect_uri"}
    assert all("Secure" in h for h in cookies.values())


def test_callback_with_bad_state_is_plain_text_400(fake_http) -> None:
    client, _ = _client(fake_http)
    r = client.get(
        "/login/google/callback?code=c1&state=forged",
        headers=_cookie_header(oauth_state="real", google_code_verifier="v"),
        follow_redirects=False,
    )
    assert r.status_code == 400
    assert r.text == "Google login failed: Invalid state parameter"
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["cache-control"] == "no-store"
    cookies = _set_cookies(r)
    for name in ("oauth_state", "google_code_verifier", "oauth_redirect_uri"):
        assert "Max-Age=0" in cookies[name]
    assert fake_http.calls == []


def test_full_login_setup_and_logout(fake_http) -> None:
    client, store = _client(fake_http)
    sid = _login(client, fake_http)

    me = client.get("/api/auth/session", headers=_cookie_header(auth_session=sid))
    assert me.headers["cache-control"] == "no-store"
    user = me.json()["user"]
    assert user["email"] == "ada@example.com"
    assert user["username"] is None
    assert user["providers"] == ["google"]

    status = client.get("/setup-account", headers=_cookie_header(auth_session=sid)).json()
    assert status["needsUsername"] is True

    r = client.post("/setup-account", json={"username": "ada_l"}, headers=_cookie_header(auth_session=sid))
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "ada_l"
    r = client.post("/setup-account", json={"username": "ada_2"}, headers=_cookie_header(auth_session=sid))
    assert r.status_code == 400

    out = client.get("/logout", headers=_cookie_header(auth_session=sid), follow_redirects=False)
    assert out.status_code == 302
    assert out.headers["location"] == "/"
    assert "Max-Age=0" in _set_cookies(out)["auth_session"]
    assert store.get_session(sid) is None

    after = client.get("/api/auth/session", headers=_cookie_header(auth_session=sid))
    assert after.json() == {"user": None}


def test_returning_user_with_username_is_sent_back(fake_http) -> None:
    store = InMemoryAuthStore()
    store.create_user(User(id="u1", username="ada", google_id="g-1"))
    client, _ = _client(fake_http, store)

    begin = client.get("/login/google", headers={"referer": "https://lawlzer.test/bills/3"}, follow_redirects=False)
    state = parse_qs(urlparse(begin.headers["location"]).query)["state"][0]
    verifier = _cookie_value(_set_cookies(begin)["google_code_verifier"])
    fake_http.add_json("POST", GOOGLE_TOKEN_URL, {"access_token": "at", "id_token": unverified_id_token("g-1")})
    r = client.get(
        f"/login/google/callback?code=c1&state={state}",
        headers=_cookie_header(oauth_state=state, google_code_verifier=verifier, oauth_redirect_uri="/bills/3"),
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["location"] == "/bills/3"


def test_stale_session_cookie_is_cleared(fake_http) -> None:
    client, _ = _client(fake_http)
    r = client.get("/api/auth/session", headers=_cookie_header(auth_session="deadbeef"))
    assert r.json() == {"user": None}
    assert "Max-Age=0" in _set_cookies(r)["auth_session"]

    anon = client.get("/api/auth/session")
    assert anon.json() == {"user": None}
    assert "auth_session" not in _set_cookies(anon)


def test_setup_account_requires_session(fake_http) -> None:
    client, _ = _client(fake_http)
    assert client.get("/setup-account").status_code == 401
    assert client.post("/setup-account", json={"username": "someone"}).status_code == 401


def test_setup_account_validation_and_conflicts(fake_http) -> None:
    store = InMemoryAuthStore()
    store.create_user(User(id="other", username="taken_name"))
    client, _ = _client(fake_http, store)
    sid = _login(client, fake_http)
    headers = _cookie_header(auth_session=sid)

    assert client.post("/setup-account", json={"username": "no"}, headers=headers).status_code == 400
    assert client.post("/setup-account", json={"username": "bad-name!"}, headers=headers).status_code == 400
    r = client.post("/setup-account", json={"username": "taken_name"}, headers=headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Username is already taken"


def test_logout_accepts_post_without_session(fake_http) -> None:
    client, _ = _client(fake_http)
    r = client.post("/logout", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/"
