"""
auth/cookies.py -- Refresh-token cookie helpers.

httponly=True: JS cannot read the cookie (XSS mitigation).
samesite="strict": never sent on cross-site requests, including top-level
    navigations -- the refresh endpoint has no reason to accept them.
secure: only over HTTPS when SECURE_COOKIES=true. Secure cookies also get a
    name prefix the browser enforces: "__Host-" pins the cookie to the exact
    host with path=/ and no Domain; "__Secure-" is used instead when
    AUTH_COOKIE_DOMAIN shares the cookie across subdomains.
"""

from __future__ import annotations

from core.config import Settings

_BASE_COOKIE_NAME = "ch_auth_refresh"


def _domain(settings: Settings) -> str:
    return settings.auth_cookie_domain.strip().lstrip(".")


def refresh_cookie_name(settings: Settings) -> str:
    if not settings.secure_cookies:
        return _BASE_COOKIE_NAME
    prefix = "__Secure" if _domain(settings) else "__Host"
    return f"{prefix}-{_BASE_COOKIE_NAME}"


def _cookie_options(settings: Settings) -> dict:
    options: dict = {
        "httponly": True,
        "secure": settings.secure_cookies,
        "samesite": "strict",
        "path": "/",
    }
    domain = _domain(settings)
    if settings.secure_cookies and domain:
        options["domain"] = f".{domain}"
    return options


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the composite refresh token as an httpOnly cookie on the response."""
    response.set_cookie(
        refresh_cookie_name(settings),
        value=token,
        max_age=settings.refresh_cookie_max_age,
        **_cookie_options(settings),
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    response.delete_cookie(refresh_cookie_name(settings), **_cookie_options(settings))
