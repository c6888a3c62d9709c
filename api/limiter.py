"""
api/limiter.py -- Per-route rate-limit pre-check.

rate_limit("login", "login_rate_limit") returns a FastAPI dependency that
charges one hit against the key "auth:login:<client ip>" using the limit
configured in Settings.login_rate_limit ("10/minute" notation).

All routes share the RateLimiter on app.state, and with it one counter
store. If each route built its own limiter the counters would be isolated
and a limit spread over several routes would never trigger.

Attach with dependencies=[Depends(...)] on the route decorator. Path-level
dependencies run before the request body is validated, so malformed bodies
are throttled too.
"""

from __future__ import annotations

import math

from fastapi import Request

from auth.dependencies import get_client_ip
from auth.ratelimit import RateLimiter
from core.config import parse_rate


class RateLimitExceeded(Exception):
    """Raised by rate_limit dependencies; api/main.py turns it into a 429."""

    def __init__(self, key: str, retry_after_ms: int) -> None:
        super().__init__(f"rate limit exceeded for {key}")
        self.key = key
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets, never less than 1."""
        return max(1, math.ceil(self.retry_after_ms / 1000))


def rate_limit(operation: str, setting: str):
    def dependency(request: Request) -> None:
        limit, window_ms = parse_rate(getattr(request.app.state.settings, setting))
        limiter: RateLimiter = request.app.state.rate_limiter
        key = f"auth:{operation}:{get_client_ip(request)}"
        result = limiter.check(key, limit, window_ms)
        if not result.allowed:
            raise RateLimitExceeded(key, result.reset_at - limiter.now_ms())

    return dependency
