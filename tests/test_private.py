"""Unit tests for auth/private.py -- keyed hashing of identifying values."""

import pytest

from auth.private import DEFAULT_DEV_PEPPER, PrivateIdentifierHasher, normalize_identifier
from core.config import Settings
from core.errors import ConfigurationError

_STRONG = "p" * 32


class TestNormalize:
    def test_strips_whitespace(self):
        assert normalize_identifier("  alice  ") == "alice"

    def test_lowercases_email_like_values(self):
        assert normalize_identifier(" Alice@Example.COM ") == "alice@example.com"

    def test_handles_stay_case_sensitive(self):
        assert normalize_identifier("AliceHandle") == "AliceHandle"


class TestHashIdentifier:
    def test_deterministic_hex_digest(self, identifiers):
        first = identifiers.hash_identifier("alice@example.com")
        assert first == identifiers.hash_identifier("alice@example.com")
        assert len(first) == 64
        int(first, 16)

    def test_normalization_applied_inside(self, identifiers):
        """Write path and query path may pass differently formatted input."""
        assert identifiers.hash_identifier("Alice@Example.com ") == identifiers.hash_identifier("alice@example.com")

    def test_case_matters_for_handles(self, identifiers):
        assert identifiers.hash_identifier("Alice") != identifiers.hash_identifier("alice")

    def test_plaintext_not_in_digest(self, identifiers):
        assert "alice" not in identifiers.hash_identifier("alice")

    def test_pepper_changes_digest(self):
        a = PrivateIdentifierHasher("a" * 32, production=True)
        b = PrivateIdentifierHasher("b" * 32, production=True)
        assert a.hash_identifier("alice") != b.hash_identifier("alice")


class TestPepperPolicy:
    def test_missing_pepper_in_production_raises(self):
        with pytest.raises(ConfigurationError):
            PrivateIdentifierHasher("", production=True)

    def test_short_pepper_in_production_raises(self):
        with pytest.raises(ConfigurationError):
            PrivateIdentifierHasher("short", production=True)

    def test_strong_pepper_in_production_ok(self):
        PrivateIdentifierHasher(_STRONG, production=True)

    def test_missing_pepper_in_debug_uses_dev_pepper(self):
        dev = PrivateIdentifierHasher("", production=False)
        explicit = PrivateIdentifierHasher(DEFAULT_DEV_PEPPER, production=False)
        assert dev.hash_identifier("alice") == explicit.hash_identifier("alice")

    def test_from_settings_enforces_production(self):
        with pytest.raises(ConfigurationError):
            PrivateIdentifierHasher.from_settings(Settings(debug=False, private_data_pepper=""))
        PrivateIdentifierHasher.from_settings(Settings(debug=False, private_data_pepper=_STRONG))
