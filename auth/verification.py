"""
auth/verification.py -- Single-use, expiring tokens for out-of-band confirmation.

Two flows use this: email verification and password reset. In both, the
plaintext token leaves the server exactly once (handed to the delivery
mechanism by the caller) and only its SHA-256 digest is persisted.

Invariants:
  - At most one outstanding token per (identifier, type). issue() replaces
    whatever was there, so an older link stops working the moment a new one
    is requested.
  - A token flips unconsumed -> consumed exactly once. consume() is one
    conditional UPDATE in the store; concurrent consumers cannot both win.
  - Expiry and consumption are independent gates: an expired token is never
    consumable even if it was never used.

consume() returns None for a wrong, expired or already-used token alike.
Callers must not turn that None into distinguishable responses.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from ulid import ULID

from auth.models import TokenType, VerificationToken
from auth.store import AuthStore
from auth.tokens import create_token, hash_token
from core.errors import IntegrityViolation

logger = logging.getLogger("chitterauth.auth.verification")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationTokenService:
    """issue(identifier, type, ttl, user_id) -> plaintext | None; consume(identifier, token, type) -> record | None."""

    def __init__(self, store: AuthStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self._clock = clock

    def issue(
        self,
        identifier: str,
        token_type: TokenType | str,
        ttl: timedelta,
        user_id: str | None = None,
    ) -> str | None:
        """Create a token for (identifier, type), invalidating any earlier one.

        Returns the plaintext token. It is not stored anywhere and cannot be
        recovered later. Returns None when concurrent issues for the same
        pair kept winning the replacement; one of their tokens is live.
        """
        token_type = TokenType(token_type)
        token = create_token()
        now = self._clock()
        record = VerificationToken(
            id=str(ULID()),
            user_id=user_id,
            identifier=identifier,
            token_hash=hash_token(token),
            type=token_type,
            expires_at=now + ttl,
            created_at=now,
        )
        try:
            self.store.replace_verification_token(record)
        except IntegrityViolation:
            # A concurrent issue for the same pair won; replace it in turn.
            logger.info("Concurrent %s token issue; retrying replacement", token_type.value)
            try:
                self.store.replace_verification_token(record)
            except IntegrityViolation:
                logger.warning("Gave up issuing %s token after repeated concurrent issues", token_type.value)
                return None
        logger.debug("Issued %s token %s (user_id=%s)", token_type.value, record.id, user_id)
        return token

    def consume(self, identifier: str, token: str, token_type: TokenType | str) -> VerificationToken | None:
        """Redeem a token. Returns the consumed record, or None on any mismatch."""
        token_type = TokenType(token_type)
        if not identifier or not token:
            return None
        return self.store.consume_verification_token(identifier, token_type, hash_token(token), self._clock())
