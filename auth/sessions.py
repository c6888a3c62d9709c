"""
auth/sessions.py -- Refresh-token sessions: create, rotate, validate, revoke.

State machine per session:

    active --rotate--> active (new secret)
    active --logout / revoke / revoke_all / reuse detected--> revoked (terminal)

Refresh secrets are one-time-use. Every successful refresh swaps the stored
hash for a new one, so the previous token dies the instant rotation
succeeds. If an old token is presented again, either the legitimate client
or an attacker is replaying a superseded secret; we cannot tell which, so
the session is revoked and both parties must re-authenticate.

Reuse policy: by default only the compromised session is revoked. With
Settings.reuse_revokes_all_sessions the whole account is logged out
everywhere. Either way a refresh_reuse_detected audit event is logged.

The token is "<session_id>.<secret>" (see auth/tokens.py), so the session
row is found by primary key before any hashing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ulid import ULID

from auth.audit import log_auth_event
from auth.models import CreatedSession, RotationResult, RotationStatus, Session, SessionMetadata
from auth.store import AuthStore
from auth.tokens import build_refresh_token, hash_token, parse_refresh_token, safe_equal
from core.errors import IntegrityViolation

logger = logging.getLogger("chitterauth.auth.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Session lifecycle over an AuthStore.

    Usage:
        manager = SessionManager(store)
        created = manager.create(user_id, SessionMetadata(ip="10.0.0.1"))
        result = manager.rotate(created.refresh_token, SessionMetadata())
        if result.status is RotationStatus.rotated:
            set_cookie(result.refresh_token)
    """

    def __init__(
        self,
        store: AuthStore,
        reuse_revokes_all: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.reuse_revokes_all = reuse_revokes_all
        self._clock = clock

    def create(self, user_id: str, metadata: SessionMetadata | None = None) -> CreatedSession:
        metadata = metadata or SessionMetadata()
        session_id = str(ULID())
        refresh_token, refresh_hash = build_refresh_token(session_id)
        now = self._clock()
        session = self.store.create_session(
            Session(
                id=session_id,
                user_id=user_id,
                refresh_hash=refresh_hash,
                user_agent=metadata.user_agent,
                ip=metadata.ip,
                created_at=now,
                last_seen_at=now,
            )
        )
        logger.debug("Created session %s for user %s", session_id, user_id)
        return CreatedSession(session=session, refresh_token=refresh_token)

    def rotate(self, refresh_token: str | None, metadata: SessionMetadata | None = None) -> RotationResult:
        """Exchange a refresh token for a new one.

        Outcomes: invalid (malformed / unknown session), revoked (session
        already terminal), reused (secret does not match -- session gets
        revoked as a side effect), rotated (new token in result.refresh_token).
        """
        metadata = metadata or SessionMetadata()
        parsed = parse_refresh_token(refresh_token)
        if parsed is None:
            return RotationResult(status=RotationStatus.invalid)
        session_id, secret = parsed

        session = self.store.get_session(session_id)
        if session is None:
            return RotationResult(status=RotationStatus.invalid)
        if not session.is_active:
            return RotationResult(status=RotationStatus.revoked, session=session)

        presented_hash = hash_token(secret)
        if not safe_equal(session.refresh_hash, presented_hash):
            return self._handle_reuse(session, metadata)

        new_token, new_hash = build_refresh_token(session.id)
        try:
            updated = self.store.swap_refresh_hash(
                session.id,
                expected_hash=presented_hash,
                new_hash=new_hash,
                when=self._clock(),
                user_agent=metadata.user_agent,
                ip=metadata.ip,
            )
        except IntegrityViolation:
            # Lost a race: another request rotated or revoked this session
            # between our read and our conditional write.
            current = self.store.get_session(session.id)
            if current is None or not current.is_active:
                return RotationResult(status=RotationStatus.revoked, session=current)
            return self._handle_reuse(current, metadata)
        return RotationResult(status=RotationStatus.rotated, session=updated, refresh_token=new_token)

    def _handle_reuse(self, session: Session, metadata: SessionMetadata) -> RotationResult:
        now = self._clock()
        self.store.revoke_session(session.id, now)
        revoked_siblings = 0
        if self.reuse_revokes_all:
            revoked_siblings = self.store.revoke_user_sessions(session.user_id, now)
        log_auth_event(
            "refresh_reuse_detected",
            user_id=session.user_id,
            ip=metadata.ip,
            user_agent=metadata.user_agent,
            level=logging.WARNING,
            session_id=session.id,
            revoked_siblings=revoked_siblings,
        )
        return RotationResult(status=RotationStatus.reused, session=self.store.get_session(session.id) or session)

    def validate(self, refresh_token: str | None) -> Session | None:
        """Resolve a refresh token to its active session without mutating anything."""
        parsed = parse_refresh_token(refresh_token)
        if parsed is None:
            return None
        session_id, secret = parsed
        session = self.store.get_session(session_id)
        if session is None or not session.is_active:
            return None
        if not safe_equal(session.refresh_hash, hash_token(secret)):
            return None
        return session

    def revoke(self, session_id: str) -> bool:
        """Revoke one session. Idempotent: returns False if it was not active."""
        return self.store.revoke_session(session_id, self._clock())

    def revoke_owned(self, session_id: str, user_id: str) -> Session | None:
        """Revoke session_id if it belongs to user_id.

        Returns the session (revoked) when owned, None when unknown or owned
        by someone else. Revoking an already revoked owned session is a no-op
        that still returns it.
        """
        session = self.store.get_session(session_id)
        if session is None or session.user_id != user_id:
            return None
        self.store.revoke_session(session_id, self._clock(), user_id=user_id)
        return self.store.get_session(session_id)

    def revoke_all(self, user_id: str) -> int:
        """Log a user out everywhere. Returns how many sessions were active."""
        return self.store.revoke_user_sessions(user_id, self._clock())

    def list_sessions(self, user_id: str) -> list[Session]:
        return self.store.list_sessions(user_id)
