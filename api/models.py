"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.models import Session

# Generous upper bound; keeps hashing cost bounded for hostile input.
_MAX_PASSWORD = 1024


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    identifier may be the login handle, the public username or an email.
    """

    identifier: str = Field(min_length=1, max_length=255)
    # Not stripped: whitespace in a password is significant.
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. Needs an email or a phone."""

    login_id: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    username: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def require_contact(self) -> "RegisterRequest":
        if not self.login_id.strip() or not self.username.strip():
            raise ValueError("login_id and username must not be blank")
        if not (self.email and self.email.strip()) and not (self.phone and self.phone.strip()):
            raise ValueError("an email or a phone number is required")
        return self


class VerifyEmailRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)


class VerifyEmailConfirm(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    token: str = Field(min_length=1, max_length=512)


class PasswordResetRequest(BaseModel):
    identifier: str = Field(min_length=1, max_length=320)


class PasswordResetConfirm(BaseModel):
    identifier: str = Field(min_length=1, max_length=320)
    token: str = Field(min_length=1, max_length=512)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserIdResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str


class SuccessResponse(BaseModel):
    """Generic acknowledgement. Identical whether or not anything happened."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None


class MeUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email_verified: bool


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[MeUser] = None


class SessionInfo(BaseModel):
    """One device in the session list. Never includes the refresh hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_agent: Optional[str]
    ip: Optional[str]
    created_at: Optional[datetime]
    last_seen_at: Optional[datetime]
    revoked_at: Optional[datetime]

    @classmethod
    def from_session(cls, session: Session) -> "SessionInfo":
        return cls(
            id=session.id,
            user_agent=session.user_agent,
            ip=session.ip,
            created_at=session.created_at,
            last_seen_at=session.last_seen_at,
            revoked_at=session.revoked_at,
        )


class SessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_session_id: str
    sessions: list[SessionInfo]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
