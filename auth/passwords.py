"""
auth/passwords.py -- Credential hashing with argon2id and a bcrypt fallback.

Pattern: Strategy. PasswordStrategy is the interface; Argon2Strategy and
BcryptStrategy are the two concrete algorithms. CredentialHasher picks the
preferred strategy once, at construction, by probing which libraries the
runtime can import -- call sites never branch on the algorithm.

Security design decisions:
  argon2id (argon2-cffi): memory-hard, so GPU/ASIC brute force is expensive.
       Defaults (19 MiB, t=2, p=1) follow the OWASP minimum recommendation.
       Costs are configurable through Settings.

  Pepper: argon2-cffi's high-level API has no keyed-hash input, so the
       password is pre-keyed with HMAC-SHA256(pepper, password) before
       argon2 sees it. Peppered records carry the PEPPER_MARKER prefix so
       verify() knows to re-apply the pepper. A database dump alone is then
       not enough to run an offline dictionary attack.

  bcrypt fallback: fixed cost factor, no pepper. Existing $2a$/$2b$/$2y$
       records stay verifiable while argon2 is preferred, and needs_rehash()
       flags them so login can migrate them transparently.

       bcrypt only looks at the first 72 bytes. Longer passwords are rejected
       with ValidationFailure instead of being silently truncated.

  Timing: verify_dummy() runs the preferred algorithm against a precomputed
       hash. Callers use it when the account does not exist so an attacker
       cannot enumerate identifiers by response time.
"""

from __future__ import annotations

import hashlib
import hmac
import importlib.util
import logging
from typing import Protocol

from core.config import Settings
from core.errors import ConfigurationError, ValidationFailure

logger = logging.getLogger("chitterauth.auth.passwords")

PEPPER_MARKER = "$pepper$"
ARGON2_PREFIX = "$argon2"
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
BCRYPT_MAX_BYTES = 72
BCRYPT_COST = 12

_DUMMY_PASSWORD = "chitterauth_timing_dummy"


def _backend_available(module: str) -> bool:
    return importlib.util.find_spec(module) is not None


class PasswordStrategy(Protocol):
    name: str

    def hash(self, password: str) -> str: ...

    def verify(self, password: str, stored_hash: str) -> bool: ...

    def handles(self, stored_hash: str) -> bool: ...

    def needs_rehash(self, stored_hash: str) -> bool: ...


# ---------------------------------------------------------------------------
# argon2id
# ---------------------------------------------------------------------------


class Argon2Strategy:
    name = "argon2id"

    def __init__(
        self,
        memory_cost: int = 19456,
        time_cost: int = 2,
        parallelism: int = 1,
        pepper: str = "",
    ) -> None:
        from argon2 import PasswordHasher, Type

        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._pepper = pepper.encode("utf-8") if pepper else b""

    def _prekey(self, password: str) -> str:
        return hmac.new(self._pepper, password.encode("utf-8"), hashlib.sha256).hexdigest()

    def hash(self, password: str) -> str:
        if self._pepper:
            return PEPPER_MARKER + self._hasher.hash(self._prekey(password))
        return self._hasher.hash(password)

    def verify(self, password: str, stored_hash: str) -> bool:
        from argon2.exceptions import InvalidHash, VerificationError

        if stored_hash.startswith(PEPPER_MARKER):
            if not self._pepper:
                # Still burn the work so a misconfiguration is not a timing oracle.
                self._hasher.hash(password)
                logger.error("Peppered password hash found but PASSWORD_PEPPER is not configured")
                return False
            candidate = self._prekey(password)
            encoded = stored_hash[len(PEPPER_MARKER) :]
        else:
            candidate = password
            encoded = stored_hash
        try:
            return self._hasher.verify(encoded, candidate)
        except (VerificationError, InvalidHash):
            return False

    def handles(self, stored_hash: str) -> bool:
        return stored_hash.startswith((PEPPER_MARKER, ARGON2_PREFIX))

    def needs_rehash(self, stored_hash: str) -> bool:
        peppered = stored_hash.startswith(PEPPER_MARKER)
        if peppered != bool(self._pepper):
            return True
        encoded = stored_hash[len(PEPPER_MARKER) :] if peppered else stored_hash
        return self._hasher.check_needs_rehash(encoded)


# ---------------------------------------------------------------------------
# bcrypt
# ---------------------------------------------------------------------------


class BcryptStrategy:
    name = "bcrypt"

    def __init__(self, rounds: int = BCRYPT_COST) -> None:
        import bcrypt

        self._bcrypt = bcrypt
        self.rounds = rounds

    def hash(self, password: str) -> str:
        raw = password.encode("utf-8")
        if len(raw) > BCRYPT_MAX_BYTES:
            raise ValidationFailure("password_too_long")
        return self._bcrypt.hashpw(raw, self._bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, stored_hash: str) -> bool:
        raw = password.encode("utf-8")
        if len(raw) > BCRYPT_MAX_BYTES:
            return False
        try:
            return self._bcrypt.checkpw(raw, stored_hash.encode("utf-8"))
        except ValueError:
            # Malformed salt / hash string.
            return False

    def handles(self, stored_hash: str) -> bool:
        return stored_hash.startswith(BCRYPT_PREFIXES)

    def needs_rehash(self, stored_hash: str) -> bool:
        try:
            return int(stored_hash.split("$")[2]) != self.rounds
        except (IndexError, ValueError):
            return True


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


def select_strategies(settings: Settings) -> list[PasswordStrategy]:
    """Probe the runtime and return usable strategies, preferred first.

    PASSWORD_ALGORITHM=auto prefers argon2id when argon2-cffi is importable.
    Forcing "bcrypt" still keeps argon2 around (second) so existing argon2
    records keep verifying.
    """
    strategies: list[PasswordStrategy] = []
    if _backend_available("argon2"):
        strategies.append(
            Argon2Strategy(
                memory_cost=settings.argon2_memory_cost,
                time_cost=settings.argon2_time_cost,
                parallelism=settings.argon2_parallelism,
                pepper=settings.password_pepper,
            )
        )
    if _backend_available("bcrypt"):
        strategies.append(BcryptStrategy(rounds=settings.bcrypt_rounds))
    if settings.password_algorithm == "bcrypt":
        strategies.sort(key=lambda s: s.name != "bcrypt")
    elif settings.password_algorithm == "argon2id" and not any(s.name == "argon2id" for s in strategies):
        raise ConfigurationError("PASSWORD_ALGORITHM=argon2id but argon2-cffi is not installed.")
    return strategies


class CredentialHasher:
    """hash(password) -> stored hash; verify(password, stored hash) -> bool.

    Usage:
        hasher = CredentialHasher.from_settings(get_settings())
        stored = hasher.hash("correct horse")
        hasher.verify("correct horse", stored)   # True
    """

    def __init__(self, strategies: list[PasswordStrategy], production: bool = True) -> None:
        if not strategies:
            if production:
                raise ConfigurationError("No password hashing library is available (install argon2-cffi or bcrypt).")
            logger.warning("No password hashing library is available; password operations will fail")
        self._strategies = strategies
        # Computed lazily on the first dummy verification, then reused.
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialHasher":
        if settings.require_password_pepper and not settings.password_pepper:
            if settings.production:
                raise ConfigurationError("PASSWORD_PEPPER is required but not configured.")
            logger.warning("REQUIRE_PASSWORD_PEPPER is set but PASSWORD_PEPPER is empty (DEBUG mode)")
        hasher = cls(select_strategies(settings), production=settings.production)
        if hasher.algorithm == "bcrypt" and settings.password_pepper:
            logger.warning("PASSWORD_PEPPER is ignored by the bcrypt fallback")
        return hasher

    @property
    def algorithm(self) -> str | None:
        return self._strategies[0].name if self._strategies else None

    @property
    def _preferred(self) -> PasswordStrategy:
        if not self._strategies:
            raise ConfigurationError("No password hashing library is available.")
        return self._strategies[0]

    def hash(self, password: str) -> str:
        return self._preferred.hash(password)

    def verify(self, password: str, stored_hash: str | None) -> bool:
        """Return True if password matches stored_hash.

        Unknown formats and empty hashes still cost one dummy verification.
        """
        if stored_hash:
            for strategy in self._strategies:
                if strategy.handles(stored_hash):
                    return strategy.verify(password, stored_hash)
        self.verify_dummy(password)
        return False

    def needs_rehash(self, stored_hash: str) -> bool:
        """True when stored_hash was not produced by the current preferred settings."""
        preferred = self._preferred
        if not preferred.handles(stored_hash):
            return True
        return preferred.needs_rehash(stored_hash)

    def verify_dummy(self, password: str) -> None:
        """Spend the same work as a real verification, discarding the result."""
        if not self._strategies:
            return
        if self._dummy_hash is None:
            self._dummy_hash = self._preferred.hash(_DUMMY_PASSWORD)
        self._preferred.verify(password, self._dummy_hash)
