"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The refresh token is read from two places, in priority order:
  1. The refresh cookie -- set by login/register/refresh for browsers.
  2. Authorization: Bearer <token> header -- non-browser clients.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.

Identity resolution uses SessionManager.validate(), which never mutates the
session. Only POST /auth/refresh rotates.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.cookies import refresh_cookie_name
from auth.models import Session, SessionMetadata
from auth.sessions import SessionManager


def get_client_ip(request: Request) -> str:
    """Client address for rate-limit keys and audit records.

    X-Forwarded-For / X-Real-IP are only honoured with TRUST_FORWARDED_FOR,
    since any client can set them when no proxy rewrites them.
    """
    if request.app.state.settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent") or None


def request_metadata(request: Request) -> SessionMetadata:
    return SessionMetadata(user_agent=get_user_agent(request), ip=get_client_ip(request))


def get_refresh_token(request: Request) -> str | None:
    """Return the presented refresh token (cookie first, then Bearer header)."""
    token = request.cookies.get(refresh_cookie_name(request.app.state.settings))
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_session(request: Request) -> Session | None:
    """Resolve the request to an active session. Never raises."""
    token = get_refresh_token(request)
    if not token:
        return None
    sessions: SessionManager = request.app.state.sessions
    return sessions.validate(token)


def get_current_session(request: Request) -> Session:
    """Require an active session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: Session = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Unauthorized."},
        )
    return session
