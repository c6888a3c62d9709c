"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. private_data_pepper -> PRIVATE_DATA_PEPPER).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Rejects malformed rate-limit strings and non-positive hashing
      costs at startup rather than on the first request that needs them.

Secrets policy:
  Peppers are validated by the components that consume them
  (auth/private.py, auth/passwords.py), which raise ConfigurationError in
  production mode. Settings only carries the raw values so every component
  stays constructible on its own in tests.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("chitterauth.config")

# "<count>/<period>" -- same notation the login throttle has always used.
_RATE_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(second|minute|hour|day)\s*$")

_PERIOD_MS: dict[str, int] = {
    "second": 1000,
    "minute": 60 * 1000,
    "hour": 60 * 60 * 1000,
    "day": 24 * 60 * 60 * 1000,
}


def parse_rate(rate: str) -> tuple[int, int]:
    """Parse "10/minute" into (limit, window_ms).

    Raises ValueError on anything that does not match the notation.
    """
    match = _RATE_PATTERN.match(rate)
    if match is None:
        raise ValueError(f"Invalid rate limit {rate!r}; expected '<count>/<second|minute|hour|day>'.")
    return int(match.group(1)), _PERIOD_MS[match.group(2)]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Production mode is simply
    DEBUG unset/false.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string means "use the SQLite file next to auth/store.py".
    database_url: str = ""

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    # HMAC key for login handles, emails and phone numbers.
    private_data_pepper: str = ""
    # Mixed into argon2 password hashes. Optional unless required below.
    password_pepper: str = ""
    require_password_pepper: bool = False

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    password_algorithm: Literal["auto", "argon2id", "bcrypt"] = "auto"
    argon2_memory_cost: int = 19456  # KiB
    argon2_time_cost: int = 2
    argon2_parallelism: int = 1
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    auth_cookie_domain: str = ""
    refresh_cookie_max_age: int = 60 * 60 * 24 * 7
    reuse_revokes_all_sessions: bool = False

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    verification_token_ttl_seconds: int = 30 * 60
    password_reset_ttl_seconds: int = 30 * 60

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Only enable behind a proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = False
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    refresh_rate_limit: str = "20/minute"
    verify_request_rate_limit: str = "5/minute"
    verify_confirm_rate_limit: str = "10/minute"
    reset_request_rate_limit: str = "5/minute"
    reset_confirm_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Fail fast on malformed rate strings and nonsensical hashing costs."""
        for name in (
            "login_rate_limit",
            "register_rate_limit",
            "refresh_rate_limit",
            "verify_request_rate_limit",
            "verify_confirm_rate_limit",
            "reset_request_rate_limit",
            "reset_confirm_rate_limit",
        ):
            parse_rate(getattr(self, name))
        for name in ("argon2_memory_cost", "argon2_time_cost", "argon2_parallelism", "bcrypt_rounds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be a positive integer.")
        if self.debug:
            logger.warning("DEBUG mode: development secrets are accepted. Never run this in production.")
        return self

    @property
    def production(self) -> bool:
        return not self.debug


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
