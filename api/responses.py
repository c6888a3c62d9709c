"""
api/responses.py -- Response shaping at the HTTP boundary.

Internally the core distinguishes many outcomes: invalid, revoked and reused
refresh tokens; unknown identifier vs wrong password; wrong, expired and
already-used verification tokens. Externally each endpoint has exactly one
failure shape. Exposing the difference would turn the endpoints into oracles
for account enumeration and token guessing.

The rich outcome still reaches the audit log, which is why every helper that
collapses an outcome also takes the metadata to log it with.

The one deliberate exception is throttling: a 429 carries Retry-After,
since revealing throttle state does not help anyone guess a secret.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, SuccessResponse
from auth.audit import log_auth_event
from auth.cookies import clear_refresh_cookie
from auth.models import RotationResult, RotationStatus, SessionMetadata
from core.config import Settings

VERIFY_REQUEST_MESSAGE = "If an account exists, a verification email will be sent."
VERIFY_CONFIRM_MESSAGE = "If the token is valid, the email will be verified."
RESET_REQUEST_MESSAGE = "If an account exists, a reset link will be sent."
RESET_CONFIRM_MESSAGE = "If the token is valid, the password was reset."


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def invalid_credentials() -> JSONResponse:
    """The single login failure shape: unknown account and bad password look alike."""
    return _no_store(error_response(401, "invalid_credentials", "Invalid credentials."))


def unauthorized(settings: Settings) -> JSONResponse:
    """401 that also clears the refresh cookie."""
    resp = error_response(401, "unauthorized", "Unauthorized.")
    clear_refresh_cookie(resp, settings)
    return _no_store(resp)


def refresh_rejected(result: RotationResult, settings: Settings, metadata: SessionMetadata) -> JSONResponse:
    """Collapse invalid / revoked / reused into one 401 and clear the cookie.

    The real status goes to the audit log; reuse is already logged at
    WARNING by the session manager.
    """
    if result.status is not RotationStatus.reused:
        log_auth_event(
            "refresh_rejected",
            user_id=result.session.user_id if result.session else None,
            ip=metadata.ip,
            user_agent=metadata.user_agent,
            level=logging.INFO,
            status=result.status.value,
        )
    return unauthorized(settings)


def generic_success(message: str | None = None) -> JSONResponse:
    """Same 200 body whether or not the identifier or token matched anything."""
    return _no_store(JSONResponse(status_code=200, content=SuccessResponse(message=message).model_dump()))
