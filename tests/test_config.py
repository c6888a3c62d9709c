"""Unit tests for core/config.py -- Settings validation and rate notation."""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings, parse_rate


@pytest.mark.parametrize(
    "rate, expected",
    [
        ("10/minute", (10, 60_000)),
        ("5/second", (5, 1_000)),
        (" 100 / hour ", (100, 3_600_000)),
        ("1/day", (1, 86_400_000)),
        ("0/minute", (0, 60_000)),
    ],
)
def test_parse_rate(rate, expected):
    assert parse_rate(rate) == expected


@pytest.mark.parametrize("rate", ["", "ten/minute", "10/fortnight", "10 per minute", "-1/minute"])
def test_parse_rate_rejects_malformed(rate):
    with pytest.raises(ValueError):
        parse_rate(rate)


def test_malformed_rate_setting_fails_at_construction():
    with pytest.raises(ValidationError):
        Settings(login_rate_limit="lots")


def test_non_positive_cost_rejected():
    with pytest.raises(ValidationError):
        Settings(argon2_time_cost=0)


def test_unknown_algorithm_rejected():
    with pytest.raises(ValidationError):
        Settings(password_algorithm="md5")


def test_production_is_not_debug():
    assert Settings(debug=False).production is True
    assert Settings(debug=True).production is False


def test_env_vars_are_read(monkeypatch):
    monkeypatch.setenv("REUSE_REVOKES_ALL_SESSIONS", "true")
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "3/minute")
    settings = Settings()
    assert settings.reuse_revokes_all_sessions is True
    assert settings.login_rate_limit == "3/minute"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
