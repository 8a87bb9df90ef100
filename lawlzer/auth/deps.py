from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from lawlzer.auth.flow import LoginFlow
from lawlzer.auth.models import RequestContext, User


def request_context(request: Request) -> RequestContext:
    """Snapshot of what the auth layer may read from an inbound request."""
    return RequestContext(
        cookies=dict(request.cookies),
        query=dict(request.query_params),
        headers={k.lower(): v for k, v in request.headers.items()},
    )


def login_flow(request: Request) -> LoginFlow:
    return request.app.state.login_flow


def authenticate_request(request: Request) -> Optional[User]:
    """
    Authenticate a request and return the User if the session cookie is present and valid.

    An expired session is deleted as a side effect.
    """
    return login_flow(request).current_user(request_context(request))


def require_user(request: Request) -> User:
    user = authenticate_request(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
