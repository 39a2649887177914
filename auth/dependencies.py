"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are accepted from two places, checked in priority order:
  1. "access_token" cookie -- set by the login and refresh endpoints.
  2. Authorization: Bearer <token> header -- clients that cannot keep cookies.

Both converge on SessionManager.authenticate(), which verifies the token with
the access key and resolves the account. A refresh token sent here fails:
it is signed with a different secret and carries type="refresh".

get_current_user() lets AuthError propagate; the API's exception handler
turns it into a 401 envelope.

Layer rule: may import from fastapi (for Request) because this module is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import PublicUser
from auth.session import SessionManager
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE


def get_session_manager(request: Request) -> SessionManager:
    """Return the SessionManager wired into app.state at startup."""
    return request.app.state.sessions


def extract_access_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def extract_refresh_token(request: Request, body_token: str | None = None) -> str | None:
    """Cookie first, then the token the client sent in the request body."""
    return request.cookies.get(REFRESH_COOKIE) or body_token or None


def get_current_user(request: Request) -> PublicUser:
    """Require authentication. Raises AuthError (401) if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    return get_session_manager(request).authenticate(extract_access_token(request))
