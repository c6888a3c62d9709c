"""
core/errors.py -- Exception hierarchy shared by the auth core and the API layer.

Three classes, three handling policies:

  ConfigurationError  Fatal. Raised while components are constructed at
                      startup (missing or weak secrets in production, no
                      password hashing backend). Never caught by the core.

  ValidationFailure   Expected and caller-recoverable: wrong password, unknown
                      identifier, bad or expired token. `reason` is for the
                      audit log only -- the API collapses every reason into one
                      generic response so it cannot be used as an oracle.

  IntegrityViolation  The store refused a conditional write (row already
                      revoked, hash already rotated, unique key taken).
                      Session and verification code treat it as a safe no-op
                      and re-classify the outcome; it is never a crash.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth core."""


class ConfigurationError(AuthError):
    """Required configuration is missing or unsafe for the current mode."""


class ValidationFailure(AuthError):
    """A credential or token did not check out.

    Args:
        reason:  internal classifier, e.g. "bad_password". Safe to log,
                 never returned to clients.
        user_id: account the attempt was resolved to, when known.
    """

    def __init__(self, reason: str, user_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.user_id = user_id


class IntegrityViolation(AuthError):
    """The persistent store rejected a write that required a precondition."""
