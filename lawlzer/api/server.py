"""
Auth HTTP server.

Provider login (Google, Discord, GitHub), the OAuth callbacks, session lookup, logout and
first-login account setup. Handlers translate requests into `RequestContext` values and flush
the cookie list of each `AuthResponse` exactly once.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from pydantic import BaseModel

from lawlzer.auth.account import AccountSetupError, set_username
from lawlzer.auth.config import SUPPORTED_PROVIDERS, AuthConfig, load_auth_config
from lawlzer.auth.cookies import clear_session, clear_transaction, read_session
from lawlzer.auth.deps import login_flow, request_context, require_user
from lawlzer.auth.flow import LoginFlow
from lawlzer.auth.models import AuthResponse
from lawlzer.auth.providers import OAuthProvider, build_providers
from lawlzer.storage.base import AuthStore
from lawlzer.storage.config import build_store

logger = logging.getLogger(__name__)

router = APIRouter()


class SetupAccountRequest(BaseModel):
    username: str


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _to_response(result: AuthResponse) -> Response:
    if result.location:
        resp: Response = RedirectResponse(url=result.location, status_code=result.status_code)
    else:
        resp = PlainTextResponse(result.body or "", status_code=result.status_code)
    for kw in result.cookies:
        resp.set_cookie(**kw)
    return _no_store(resp)


def _require_provider(flow: LoginFlow, provider: str) -> None:
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail="Unknown provider")
    if provider not in flow.providers:
        raise HTTPException(status_code=403, detail=f"{provider} login is not enabled")


@router.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@router.get("/api/auth/providers")
def auth_providers(request: Request) -> Dict[str, Any]:
    """
    Enabled login options for the UI.
    This endpoint is intentionally public; it returns no secrets.
    """
    flow = login_flow(request)
    return {
        "ok": True,
        "providers": [
            {
                "name": name,
                "displayName": flow.providers[name].display_name,
                "loginUrl": f"/login/{name}",
            }
            for name in SUPPORTED_PROVIDERS
            if name in flow.providers
        ],
    }


@router.get("/login/{provider}")
def login(provider: str, request: Request) -> Response:
    flow = login_flow(request)
    _require_provider(flow, provider)
    return _to_response(flow.begin_login(provider, request_context(request)))


@router.get("/login/{provider}/callback")
def login_callback(provider: str, request: Request) -> Response:
    flow = login_flow(request)
    try:
        _require_provider(flow, provider)
    except HTTPException as e:
        # Same body as the default handler, plus the transaction cookies cleared.
        resp = JSONResponse(status_code=e.status_code, content={"detail": e.detail})
        for kw in clear_transaction(flow.cfg):
            resp.set_cookie(**kw)
        return _no_store(resp)
    return _to_response(flow.complete_login(provider, request_context(request)))


@router.get("/api/auth/session")
def auth_session(request: Request) -> Response:
    flow = login_flow(request)
    ctx = request_context(request)
    user = flow.current_user(ctx)
    resp = JSONResponse(content={"user": user.to_public_dict() if user else None})
    if user is None and read_session(ctx.cookies):
        # Expired or unknown session: drop the cookie so the browser stops sending it.
        resp.set_cookie(**clear_session(flow.cfg))
    return _no_store(resp)


@router.api_route("/logout", methods=["GET", "POST"])
def logout(request: Request) -> Response:
    return _to_response(login_flow(request).logout(request_context(request)))


@router.get("/setup-account")
def setup_account_status(request: Request) -> Response:
    user = require_user(request)
    return _no_store(
        JSONResponse(
            content={
                "user": user.to_public_dict(),
                "needsUsername": not user.username,
            }
        )
    )


@router.post("/setup-account")
def setup_account(body: SetupAccountRequest, request: Request) -> Response:
    user = require_user(request)
    flow = login_flow(request)
    try:
        updated = set_username(flow.store, user, body.username)
    except AccountSetupError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return _no_store(JSONResponse(content={"ok": True, "user": updated.to_public_dict()}))


def _startup_maybe_migrate_db() -> None:
    """
    Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    This should never prevent the server from starting; failures are logged.
    """
    try:
        from lawlzer.storage.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)
    except Exception as e:
        logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    _startup_maybe_migrate_db()
    yield


async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


def create_app(
    cfg: Optional[AuthConfig] = None,
    store: Optional[AuthStore] = None,
    providers: Optional[Dict[str, OAuthProvider]] = None,
) -> FastAPI:
    """Build the app; anything not passed in comes from the environment."""
    cfg = cfg or load_auth_config()
    if store is None:
        store = build_store()
    if providers is None:
        providers = build_providers(cfg)

    app = FastAPI(title="Lawlzer auth", lifespan=_lifespan)
    app.state.login_flow = LoginFlow(cfg, store, providers)
    app.middleware("http")(log_requests)
    app.include_router(router)

    logger.info(
        "Auth config: providers=%s cookie_secure=%s signed_transaction_cookies=%s",
        ",".join(sorted(providers)) or "none",
        cfg.cookie_secure,
        bool(cfg.session_secret),
    )
    return app


app = create_app()


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting auth server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
