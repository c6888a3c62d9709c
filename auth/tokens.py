"""
auth/tokens.py -- Random secret, token hashing, and refresh-token format utilities.

Shared by the session manager (refresh secrets) and the verification token
service (email / password-reset tokens).

Security design decisions:
  Secrets: secrets.token_urlsafe(32) gives 256 bits of entropy as URL-safe
       base64 (alphabet A-Z a-z 0-9 - _), so it never contains the refresh
       token delimiter.

  Hashing: plain SHA-256 hex. These are high-entropy random values, not
       passwords -- a slow KDF buys nothing and a deterministic digest lets
       the store look rows up by hash. Only the digest is persisted.

  Comparison: hmac.compare_digest for every secret-derived comparison so
       match/mismatch timing does not depend on the common prefix length.

  Refresh token wire format: "<session_id>.<secret>". Session ids are ULIDs
       (Crockford base32) and secrets are URL-safe base64; neither alphabet
       contains ".", so the split is unambiguous and the store can locate the
       session row before any hashing happens.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

DEFAULT_TOKEN_BYTES = 32
REFRESH_TOKEN_SEPARATOR = "."


def create_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return a URL-safe random secret with nbytes of entropy."""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a token. This is what gets stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def safe_equal(a: str, b: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def build_refresh_token(session_id: str) -> tuple[str, str]:
    """Mint a fresh secret for session_id.

    Returns (refresh_token, refresh_hash): the composite token for the client
    and the digest for the store.
    """
    secret = create_token()
    return f"{session_id}{REFRESH_TOKEN_SEPARATOR}{secret}", hash_token(secret)


def parse_refresh_token(raw: str | None) -> tuple[str, str] | None:
    """Split a composite refresh token into (session_id, secret).

    Returns None for anything malformed: empty input, missing or repeated
    separator, or an empty half.
    """
    if not raw:
        return None
    parts = raw.split(REFRESH_TOKEN_SEPARATOR)
    if len(parts) != 2:
        return None
    session_id, secret = parts
    if not session_id or not secret:
        return None
    return session_id, secret
