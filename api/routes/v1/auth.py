"""
api/routes/v1/auth.py -- Authentication, session and verification REST endpoints.

Routes:
  POST   /api/v1/auth/register                -- create account; sets refresh cookie
  POST   /api/v1/auth/login                   -- password login; sets refresh cookie
  POST   /api/v1/auth/refresh                 -- rotate refresh token
  POST   /api/v1/auth/logout                  -- revoke current session; clears cookie
  GET    /api/v1/auth/me                      -- identity of the presented session
  GET    /api/v1/auth/sessions                -- caller's sessions (device list)
  DELETE /api/v1/auth/sessions                -- log out everywhere
  DELETE /api/v1/auth/sessions/{id}           -- revoke one of the caller's sessions
  POST   /api/v1/auth/verify-email/request    -- issue email verification token
  POST   /api/v1/auth/verify-email/confirm    -- redeem it
  POST   /api/v1/auth/password-reset/request  -- issue password reset token
  POST   /api/v1/auth/password-reset/confirm  -- redeem it and set a new password

Security:
  Rate limits: register, login, refresh and all four verification endpoints
      are pre-checked per client IP (api/limiter.py).
  Login uses authenticate_user(), which equalizes timing for unknown
      identifiers. Do NOT inline the lookup + verify.
  Refresh failures (invalid / revoked / reused) share one 401 and clear the
      cookie. The distinction only reaches the audit log.
  Request/confirm endpoints answer with the same body whether or not the
      account or token exists.
  Cache-Control: no-store on every response carrying identity or tokens.
  IDOR guard: DELETE /sessions/{id} passes the caller's user_id to the
      store, whose WHERE clause checks ownership.

Handlers are plain def functions: password hashing is CPU-bound, and
Starlette runs sync handlers in its threadpool, off the event loop.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import rate_limit
from api.models import (
    LoginRequest,
    MeResponse,
    MeUser,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    SessionInfo,
    SessionListResponse,
    SuccessResponse,
    UserIdResponse,
    VerifyEmailConfirm,
    VerifyEmailRequest,
)
from api.responses import (
    RESET_CONFIRM_MESSAGE,
    RESET_REQUEST_MESSAGE,
    VERIFY_CONFIRM_MESSAGE,
    VERIFY_REQUEST_MESSAGE,
    error_response,
    generic_success,
    refresh_rejected,
)
from auth.accounts import authenticate_user, find_account, register_user
from auth.audit import log_auth_event
from auth.cookies import clear_refresh_cookie, set_refresh_cookie
from auth.dependencies import get_current_session, get_refresh_token, request_metadata, try_get_current_session
from auth.models import RotationStatus, Session, TokenType
from core.errors import IntegrityViolation, ValidationFailure

router = APIRouter()


def _with_session_cookie(content: dict, status_code: int, token: str, request: Request) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    set_refresh_cookie(resp, token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post(
    "/auth/register",
    response_model=UserIdResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("register", "register_rate_limit"))],
)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and sign it in.

    Only the private-identifier hashes of login_id, email and phone are
    stored. A duplicate of any of them (or of the username) returns 409.
    """
    state = request.app.state
    meta = request_metadata(request)
    try:
        user = register_user(
            state.store,
            state.hasher,
            state.identifiers,
            login_id=body.login_id,
            password=body.password,
            username=body.username,
            email=body.email,
            phone=body.phone,
        )
    except IntegrityViolation:
        return error_response(409, "conflict", "Account already exists.")
    except ValidationFailure as exc:
        log_auth_event("register_rejected", ip=meta.ip, user_agent=meta.user_agent, reason=exc.reason)
        return error_response(400, "invalid_request", "Invalid request.")

    created = state.sessions.create(user.id, meta)
    log_auth_event("register", user_id=user.id, ip=meta.ip, user_agent=meta.user_agent)
    return _with_session_cookie(UserIdResponse(user_id=user.id).model_dump(), 201, created.refresh_token, request)


@router.post(
    "/auth/login",
    response_model=UserIdResponse,
    dependencies=[Depends(rate_limit("login", "login_rate_limit"))],
)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with identifier and password; set the refresh cookie.

    Failures re-raise ValidationFailure after audit logging; the handler in
    api/main.py answers every reason with the same 401.
    """
    state = request.app.state
    meta = request_metadata(request)
    try:
        user = authenticate_user(state.store, state.hasher, state.identifiers, body.identifier, body.password)
    except ValidationFailure as exc:
        log_auth_event("login_failed", user_id=exc.user_id, ip=meta.ip, user_agent=meta.user_agent, reason=exc.reason)
        raise

    created = state.sessions.create(user.id, meta)
    log_auth_event("login", user_id=user.id, ip=meta.ip, user_agent=meta.user_agent, session_id=created.session.id)
    return _with_session_cookie(UserIdResponse(user_id=user.id).model_dump(), 200, created.refresh_token, request)


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/auth/refresh",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limit("refresh", "refresh_rate_limit"))],
)
def refresh(request: Request) -> JSONResponse:
    """Rotate the presented refresh token and re-issue the cookie."""
    state = request.app.state
    meta = request_metadata(request)
    result = state.sessions.rotate(get_refresh_token(request), meta)
    if result.status is RotationStatus.rotated:
        return _with_session_cookie(SuccessResponse().model_dump(), 200, result.refresh_token, request)
    return refresh_rejected(result, state.settings, meta)


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the presented session, if any, and clear the cookie. Always 200."""
    state = request.app.state
    session = try_get_current_session(request)
    if session is not None:
        state.sessions.revoke(session.id)
        meta = request_metadata(request)
        log_auth_event("logout", user_id=session.user_id, ip=meta.ip, user_agent=meta.user_agent, session_id=session.id)
    resp = generic_success()
    clear_refresh_cookie(resp, state.settings)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> JSONResponse:
    """Identity of the presented session. Unauthenticated is a 200 with authenticated=false."""
    state = request.app.state
    session = try_get_current_session(request)
    user = state.store.get_user(session.user_id) if session is not None else None
    if user is None:
        resp = JSONResponse(status_code=200, content=MeResponse(authenticated=False).model_dump())
        if get_refresh_token(request):
            clear_refresh_cookie(resp, state.settings)
    else:
        payload = MeResponse(
            authenticated=True,
            user=MeUser(id=user.id, username=user.username, email_verified=user.email_verified_at is not None),
        )
        resp = JSONResponse(status_code=200, content=payload.model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/sessions", response_model=SessionListResponse)
def list_sessions(request: Request, current: Session = Depends(get_current_session)) -> SessionListResponse:
    """All sessions of the caller's account, newest first, including revoked ones."""
    sessions = request.app.state.sessions.list_sessions(current.user_id)
    return SessionListResponse(
        current_session_id=current.id,
        sessions=[SessionInfo.from_session(s) for s in sessions],
    )


@router.delete("/auth/sessions", response_model=SuccessResponse)
def revoke_all_sessions(request: Request, current: Session = Depends(get_current_session)) -> JSONResponse:
    """Log out everywhere, including the calling device."""
    state = request.app.state
    count = state.sessions.revoke_all(current.user_id)
    meta = request_metadata(request)
    log_auth_event("logout_all", user_id=current.user_id, ip=meta.ip, user_agent=meta.user_agent, revoked=count)
    resp = generic_success()
    clear_refresh_cookie(resp, state.settings)
    return resp


@router.delete("/auth/sessions/{session_id}", response_model=SuccessResponse)
def revoke_session(
    request: Request,
    session_id: str,
    current: Session = Depends(get_current_session),
) -> JSONResponse:
    """Revoke one of the caller's sessions. 404 for unknown or foreign ids."""
    state = request.app.state
    target = state.sessions.revoke_owned(session_id, current.user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Session not found."},
        )
    meta = request_metadata(request)
    log_auth_event("session_revoked", user_id=current.user_id, ip=meta.ip, user_agent=meta.user_agent, session_id=session_id)
    resp = generic_success()
    if target.id == current.id:
        clear_refresh_cookie(resp, state.settings)
    return resp


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post(
    "/auth/verify-email/request",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limit("verify-request", "verify_request_rate_limit"))],
)
def verify_email_request(request: Request, body: VerifyEmailRequest) -> JSONResponse:
    """Issue a verification token if the email belongs to an account."""
    state = request.app.state
    email_hash = state.identifiers.hash_identifier(body.email)
    user = state.store.get_user_by_email_hash(email_hash)
    if user is not None:
        token = state.verification.issue(
            email_hash,
            TokenType.verify_email,
            timedelta(seconds=state.settings.verification_token_ttl_seconds),
            user_id=user.id,
        )
        if token is not None:
            state.delivery.deliver(TokenType.verify_email, user.id, body.email.strip(), token)
        log_auth_event("verify_email_request", user_id=user.id, ip=request_metadata(request).ip)
    return generic_success(VERIFY_REQUEST_MESSAGE)


@router.post(
    "/auth/verify-email/confirm",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limit("verify-confirm", "verify_confirm_rate_limit"))],
)
def verify_email_confirm(request: Request, body: VerifyEmailConfirm) -> JSONResponse:
    state = request.app.state
    record = state.verification.consume(
        state.identifiers.hash_identifier(body.email),
        body.token,
        TokenType.verify_email,
    )
    if record is not None and record.user_id:
        state.store.mark_email_verified(record.user_id, record.consumed_at)
        log_auth_event("email_verified", user_id=record.user_id, ip=request_metadata(request).ip)
    return generic_success(VERIFY_CONFIRM_MESSAGE)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post(
    "/auth/password-reset/request",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limit("reset-request", "reset_request_rate_limit"))],
)
def password_reset_request(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Issue a reset token if the identifier (handle, username or email) resolves."""
    state = request.app.state
    user = find_account(state.store, state.identifiers, body.identifier)
    if user is not None:
        token = state.verification.issue(
            state.identifiers.hash_identifier(body.identifier),
            TokenType.password_reset,
            timedelta(seconds=state.settings.password_reset_ttl_seconds),
            user_id=user.id,
        )
        if token is not None:
            state.delivery.deliver(TokenType.password_reset, user.id, body.identifier.strip(), token)
        log_auth_event("password_reset_request", user_id=user.id, ip=request_metadata(request).ip)
    return generic_success(RESET_REQUEST_MESSAGE)


@router.post(
    "/auth/password-reset/confirm",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limit("reset-confirm", "reset_confirm_rate_limit"))],
)
def password_reset_confirm(request: Request, body: PasswordResetConfirm) -> JSONResponse:
    """Redeem a reset token, replace the password and log out every session.

    The new hash is computed before the token is consumed, so a password the
    hasher rejects does not burn the token.
    """
    state = request.app.state
    try:
        new_hash = state.hasher.hash(body.password)
    except ValidationFailure:
        return generic_success(RESET_CONFIRM_MESSAGE)

    record = state.verification.consume(
        state.identifiers.hash_identifier(body.identifier),
        body.token,
        TokenType.password_reset,
    )
    if record is not None and record.user_id:
        state.store.update_password_hash(record.user_id, new_hash)
        revoked = state.sessions.revoke_all(record.user_id)
        log_auth_event("password_reset", user_id=record.user_id, ip=request_metadata(request).ip, revoked=revoked)
    return generic_success(RESET_CONFIRM_MESSAGE)
