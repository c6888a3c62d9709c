"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Stores map rows to these; services and routes pass them around.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenType(str, Enum):
    """Purpose of a single-use verification token."""

    verify_email = "verify_email"
    password_reset = "password_reset"


class RotationStatus(str, Enum):
    """Outcome of a refresh-token rotation attempt.

    Only `rotated` is a success. `reused` is kept distinct from `invalid`
    for the audit log; the HTTP layer must never tell them apart.
    """

    invalid = "invalid"
    revoked = "revoked"
    reused = "reused"
    rotated = "rotated"


@dataclass
class User:
    """A local account.

    Identifying values are stored as private-identifier hashes only:
    login_hash, email_hash and phone_hash are HMAC-SHA256 digests of the
    normalized plaintext. username is the public display handle.
    """

    id: str
    login_hash: str
    username: str
    password_hash: str | None = None
    email_hash: str | None = None
    phone_hash: str | None = None
    email_verified_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Session:
    """One authenticated device/browser binding.

    refresh_hash is the SHA-256 of the current refresh secret, never the
    secret. revoked_at is terminal: once set, the session never comes back.
    """

    id: str
    user_id: str
    refresh_hash: str
    user_agent: str | None = None
    ip: str | None = None
    created_at: datetime | None = None
    last_seen_at: datetime | None = None
    revoked_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


@dataclass
class SessionMetadata:
    """Client details recorded on create and refreshed on rotation."""

    user_agent: str | None = None
    ip: str | None = None


@dataclass
class CreatedSession:
    session: Session
    refresh_token: str


@dataclass
class RotationResult:
    status: RotationStatus
    session: Session | None = None
    refresh_token: str | None = None


@dataclass
class VerificationToken:
    """A single-use capability for an out-of-band confirmation.

    identifier is opaque to the token service. The API layer stores the
    private-identifier hash of the email or login handle here.
    """

    id: str
    identifier: str
    token_hash: str
    type: TokenType
    expires_at: datetime
    user_id: str | None = None
    consumed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class RateLimitEntry:
    count: int
    reset_at: int  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds
