"""
api/main.py -- FastAPI application entry point for ChitterAuth.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for the configured origins
  3. log_requests          -- one access-log line per request

Rate limits are route dependencies (api/limiter.py), not middleware, so the
health check and the session-management routes are never throttled.

Lifespan builds every auth component from Settings and hangs it on app.state;
routes reach them through request.app.state. Tests replace the lifespan with
one that wires in-memory stores and fast hashers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.limiter import RateLimitExceeded
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.responses import invalid_credentials
from api.routes.v1.auth import router as auth_router
from auth.delivery import LoggingDelivery
from auth.passwords import CredentialHasher
from auth.private import PrivateIdentifierHasher
from auth.ratelimit import RateLimiter
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.verification import VerificationTokenService
from core.config import get_settings
from core.errors import ValidationFailure

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("chitterauth.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth components on startup; close the store on shutdown.

    Hashers come first: in production a missing pepper or an unusable
    password algorithm raises ConfigurationError here and the server never
    starts accepting requests.
    """
    settings = get_settings()
    logger.info("ChitterAuth API starting up (production=%s)", settings.production)
    app.state.settings = settings
    app.state.hasher = CredentialHasher.from_settings(settings)
    app.state.identifiers = PrivateIdentifierHasher.from_settings(settings)
    logger.info("Password hashing: %s", app.state.hasher.algorithm)

    app.state.store = AuthStore(settings.database_url)
    app.state.rate_limiter = RateLimiter()
    app.state.sessions = SessionManager(app.state.store, reuse_revokes_all=settings.reuse_revokes_all_sessions)
    app.state.verification = VerificationTokenService(app.state.store)
    app.state.delivery = LoggingDelivery()
    logger.info("Auth initialized")

    yield

    app.state.store.close()
    logger.info("ChitterAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ChitterAuth API",
    description="Account authentication: password login, rotating refresh sessions, email verification and password reset.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None if _settings.production else "/docs",
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last one added is outermost.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After in whole seconds until the window resets."""
    logger.warning("Rate limit exceeded: %s", exc.key)
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.")
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    """Every credential failure reason maps to the same 401.

    The reason was already audit-logged by the route that raised it.
    """
    return invalid_credentials()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with the field errors. Input values are left out so passwords never echo back."""
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(errors),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for HTTPException; dict details are used as the error field."""
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        response = JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump(),
        )
    if exc.status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint -- never rate limited
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok" if request.app.state.store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
