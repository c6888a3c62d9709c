"""Unit tests for auth/passwords.py -- credential hashing.

Covers:
- argon2id hashes verify and reject
- pepper marker, pepper mismatch and rehash on pepper change
- bcrypt fallback records verify and are flagged for rehash
- bcrypt 72-byte limit is rejected, not truncated
- unknown / empty stored hashes cost a dummy verification and fail
- strategy selection and production configuration errors
"""

import pytest

from auth.passwords import (
    PEPPER_MARKER,
    Argon2Strategy,
    BcryptStrategy,
    CredentialHasher,
    select_strategies,
)
from core.config import Settings
from core.errors import ConfigurationError, ValidationFailure


class TestArgon2:
    def test_hash_is_argon2id(self, hasher):
        stored = hasher.hash("correct horse battery staple")
        assert stored.startswith("$argon2id$")
        assert hasher.algorithm == "argon2id"

    def test_verify_accepts_correct_password(self, hasher):
        stored = hasher.hash("correct horse battery staple")
        assert hasher.verify("correct horse battery staple", stored) is True

    def test_verify_rejects_wrong_password(self, hasher):
        stored = hasher.hash("correct horse battery staple")
        assert hasher.verify("correct horse battery stapler", stored) is False

    def test_same_password_hashes_differently(self, hasher):
        """Random salts: two hashes of one password must differ."""
        assert hasher.hash("pw") != hasher.hash("pw")

    def test_whitespace_is_significant(self, hasher):
        stored = hasher.hash(" padded ")
        assert hasher.verify("padded", stored) is False


class TestPepper:
    def test_peppered_hash_carries_marker(self, make_hasher):
        peppered = make_hasher(pepper="server-side-pepper")
        stored = peppered.hash("hunter2")
        assert stored.startswith(PEPPER_MARKER)
        assert peppered.verify("hunter2", stored) is True

    def test_wrong_pepper_does_not_verify(self, make_hasher):
        stored = make_hasher(pepper="pepper-one").hash("hunter2")
        assert make_hasher(pepper="pepper-two").verify("hunter2", stored) is False

    def test_missing_pepper_does_not_verify(self, make_hasher):
        """A peppered record cannot be verified by a hasher without the pepper."""
        stored = make_hasher(pepper="pepper-one").hash("hunter2")
        assert make_hasher().verify("hunter2", stored) is False

    def test_unpeppered_record_flagged_when_pepper_added(self, make_hasher):
        stored = make_hasher().hash("hunter2")
        peppered = make_hasher(pepper="new-pepper")
        assert peppered.verify("hunter2", stored) is True
        assert peppered.needs_rehash(stored) is True

    def test_current_record_not_flagged(self, make_hasher):
        peppered = make_hasher(pepper="pepper")
        assert peppered.needs_rehash(peppered.hash("hunter2")) is False


class TestBcryptFallback:
    def test_bcrypt_record_verifies_under_argon2_preference(self, hasher):
        legacy = BcryptStrategy(rounds=4).hash("legacy-pass")
        assert legacy.startswith("$2b$")
        assert hasher.verify("legacy-pass", legacy) is True
        assert hasher.verify("wrong", legacy) is False

    def test_bcrypt_record_needs_rehash(self, hasher):
        legacy = BcryptStrategy(rounds=4).hash("legacy-pass")
        assert hasher.needs_rehash(legacy) is True

    def test_bcrypt_only_hasher(self):
        only = CredentialHasher([BcryptStrategy(rounds=4)], production=False)
        stored = only.hash("pw")
        assert only.algorithm == "bcrypt"
        assert only.verify("pw", stored) is True
        assert only.needs_rehash(stored) is False

    def test_bcrypt_cost_change_needs_rehash(self):
        stored = BcryptStrategy(rounds=4).hash("pw")
        assert BcryptStrategy(rounds=5).needs_rehash(stored) is True

    def test_password_over_72_bytes_rejected(self):
        """bcrypt would silently ignore everything past byte 72."""
        with pytest.raises(ValidationFailure) as exc_info:
            BcryptStrategy(rounds=4).hash("a" * 73)
        assert exc_info.value.reason == "password_too_long"

    def test_long_password_never_verifies_against_bcrypt(self):
        strategy = BcryptStrategy(rounds=4)
        stored = strategy.hash("a" * 72)
        assert strategy.verify("a" * 72 + "b", stored) is False

    def test_argon2_accepts_long_passwords(self, hasher):
        long_pw = "x" * 200
        assert hasher.verify(long_pw, hasher.hash(long_pw)) is True


class TestMalformedHashes:
    @pytest.mark.parametrize("stored", [None, "", "plaintext", "$unknown$abc", "$argon2id$garbage", "$2b$04$short"])
    def test_malformed_or_unknown_hash_is_false(self, hasher, stored):
        assert hasher.verify("anything", stored) is False

    def test_verify_dummy_does_not_raise(self, hasher):
        hasher.verify_dummy("whatever")
        hasher.verify_dummy("whatever again")


class TestConfiguration:
    def test_no_backend_in_production_raises(self):
        with pytest.raises(ConfigurationError):
            CredentialHasher([], production=True)

    def test_no_backend_in_debug_fails_on_use(self):
        empty = CredentialHasher([], production=False)
        assert empty.algorithm is None
        with pytest.raises(ConfigurationError):
            empty.hash("pw")

    def test_required_pepper_missing_in_production_raises(self):
        settings = Settings(debug=False, require_password_pepper=True, password_pepper="")
        with pytest.raises(ConfigurationError):
            CredentialHasher.from_settings(settings)

    def test_required_pepper_missing_in_debug_is_allowed(self):
        settings = Settings(debug=True, require_password_pepper=True, password_pepper="")
        assert CredentialHasher.from_settings(settings).algorithm == "argon2id"

    def test_auto_prefers_argon2(self):
        strategies = select_strategies(Settings(debug=True))
        assert isinstance(strategies[0], Argon2Strategy)
        assert [s.name for s in strategies] == ["argon2id", "bcrypt"]

    def test_forced_bcrypt_keeps_argon2_for_verification(self):
        strategies = select_strategies(Settings(debug=True, password_algorithm="bcrypt"))
        assert [s.name for s in strategies] == ["bcrypt", "argon2id"]

    def test_forced_argon2_without_library_raises(self, monkeypatch):
        monkeypatch.setattr("auth.passwords._backend_available", lambda module: module != "argon2")
        with pytest.raises(ConfigurationError):
            select_strategies(Settings(debug=True, password_algorithm="argon2id"))

    def test_auto_without_argon2_falls_back_to_bcrypt(self, monkeypatch):
        monkeypatch.setattr("auth.passwords._backend_available", lambda module: module != "argon2")
        strategies = select_strategies(Settings(debug=True))
        assert [s.name for s in strategies] == ["bcrypt"]
