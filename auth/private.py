"""
auth/private.py -- Deterministic keyed hashing of personally identifying values.

Login handles, email addresses and phone numbers are stored as
HMAC-SHA256(PRIVATE_DATA_PEPPER, normalize(value)). The digest is
deterministic, so the store can answer "does this handle already exist" with
an equality lookup on a UNIQUE column without ever holding the plaintext.

Normalization happens inside hash_identifier(), never at call sites, so the
write path (registration) and the query path (login, verification) cannot
drift apart. A mismatch there would make lookups silently fail.

The pepper is distinct from PASSWORD_PEPPER. Without it, anyone holding the
database could recompute digests for a list of candidate emails.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from core.config import Settings
from core.errors import ConfigurationError

logger = logging.getLogger("chitterauth.auth.private")

MIN_PEPPER_LENGTH = 32
# Fixed rather than random so development databases survive restarts.
DEFAULT_DEV_PEPPER = "dev-private-pepper"


def normalize_identifier(value: str) -> str:
    """Trim whitespace; lowercase email-like values.

    Login handles stay case-sensitive. Anything containing "@" is treated as
    an email address, whose domain and (in practice) local part are
    case-insensitive.
    """
    normalized = value.strip()
    if "@" in normalized:
        normalized = normalized.lower()
    return normalized


class PrivateIdentifierHasher:
    """hash_identifier(value) -> 64-char hex digest.

    Raises ConfigurationError at construction in production mode when the
    pepper is missing or shorter than MIN_PEPPER_LENGTH.
    """

    def __init__(self, pepper: str, production: bool = True) -> None:
        if not pepper:
            if production:
                raise ConfigurationError("PRIVATE_DATA_PEPPER must be defined in production.")
            logger.warning("PRIVATE_DATA_PEPPER not set; using the development pepper")
            pepper = DEFAULT_DEV_PEPPER
        elif len(pepper) < MIN_PEPPER_LENGTH:
            if production:
                raise ConfigurationError(f"PRIVATE_DATA_PEPPER must be at least {MIN_PEPPER_LENGTH} characters.")
            logger.warning("PRIVATE_DATA_PEPPER is shorter than %d characters", MIN_PEPPER_LENGTH)
        self._key = pepper.encode("utf-8")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PrivateIdentifierHasher":
        return cls(settings.private_data_pepper, production=settings.production)

    def hash_identifier(self, value: str) -> str:
        return hmac.new(self._key, normalize_identifier(value).encode("utf-8"), hashlib.sha256).hexdigest()
