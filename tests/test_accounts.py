"""Unit tests for auth/accounts.py -- registration, lookup and authentication."""

import pytest

from auth.accounts import authenticate_user, find_account, register_user
from auth.passwords import BcryptStrategy
from core.errors import IntegrityViolation, ValidationFailure


@pytest.fixture
def alice(store, hasher, identifiers):
    return register_user(
        store,
        hasher,
        identifiers,
        login_id="alice-login",
        password="s3cret pass",
        username="alice",
        email="Alice@Example.com",
    )


class TestRegister:
    def test_only_hashes_are_stored(self, alice, identifiers):
        assert alice.login_hash == identifiers.hash_identifier("alice-login")
        assert alice.email_hash == identifiers.hash_identifier("alice@example.com")
        assert alice.phone_hash is None
        assert "alice-login" not in alice.login_hash
        assert alice.password_hash.startswith("$argon2id$")

    def test_duplicate_login_rejected(self, alice, store, hasher, identifiers):
        with pytest.raises(IntegrityViolation):
            register_user(store, hasher, identifiers, login_id="alice-login", password="x", username="other", phone="+15550100")

    def test_duplicate_email_rejected_case_insensitively(self, alice, store, hasher, identifiers):
        with pytest.raises(IntegrityViolation):
            register_user(store, hasher, identifiers, login_id="other", password="x", username="other", email=" ALICE@example.com")

    def test_login_handle_equal_to_existing_username_rejected(self, alice, store, hasher, identifiers):
        with pytest.raises(IntegrityViolation):
            register_user(store, hasher, identifiers, login_id="alice", password="x", username="mallory")
        assert find_account(store, identifiers, "alice").id == alice.id
        assert store.get_user_by_username("mallory") is None

    def test_login_handle_equal_to_existing_email_rejected(self, alice, store, hasher, identifiers):
        with pytest.raises(IntegrityViolation):
            register_user(store, hasher, identifiers, login_id="alice@example.com", password="x", username="mallory")
        assert find_account(store, identifiers, "alice@example.com").id == alice.id

    def test_username_equal_to_existing_login_handle_rejected(self, alice, store, hasher, identifiers):
        with pytest.raises(IntegrityViolation):
            register_user(store, hasher, identifiers, login_id="mallory-login", password="x", username="alice-login")
        assert find_account(store, identifiers, "alice-login").id == alice.id


class TestFindAccount:
    @pytest.mark.parametrize("identifier", ["alice-login", "alice", "alice@example.com", " ALICE@EXAMPLE.COM "])
    def test_resolves_handle_username_and_email(self, alice, store, identifiers, identifier):
        assert find_account(store, identifiers, identifier).id == alice.id

    @pytest.mark.parametrize("identifier", ["", "   ", "nobody", "ALICE-LOGIN"])
    def test_unknown(self, alice, store, identifiers, identifier):
        assert find_account(store, identifiers, identifier) is None


class TestAuthenticate:
    def test_success(self, alice, store, hasher, identifiers):
        assert authenticate_user(store, hasher, identifiers, "alice-login", "s3cret pass").id == alice.id

    def test_wrong_password(self, alice, store, hasher, identifiers):
        with pytest.raises(ValidationFailure) as exc_info:
            authenticate_user(store, hasher, identifiers, "alice-login", "wrong")
        assert exc_info.value.reason == "bad_password"
        assert exc_info.value.user_id == alice.id

    def test_unknown_identifier_runs_dummy_verification(self, store, hasher, identifiers, monkeypatch):
        calls = []
        monkeypatch.setattr(hasher, "verify_dummy", lambda password: calls.append(password))
        with pytest.raises(ValidationFailure) as exc_info:
            authenticate_user(store, hasher, identifiers, "ghost", "whatever")
        assert exc_info.value.reason == "unknown_identifier"
        assert calls == ["whatever"]

    def test_legacy_bcrypt_hash_upgraded_on_login(self, alice, store, hasher, identifiers):
        store.update_password_hash(alice.id, BcryptStrategy(rounds=4).hash("s3cret pass"))
        authenticate_user(store, hasher, identifiers, "alice", "s3cret pass")
        upgraded = store.get_user(alice.id).password_hash
        assert upgraded.startswith("$argon2id$")
        assert hasher.verify("s3cret pass", upgraded)

    def test_failed_login_does_not_upgrade(self, alice, store, hasher, identifiers):
        legacy = BcryptStrategy(rounds=4).hash("s3cret pass")
        store.update_password_hash(alice.id, legacy)
        with pytest.raises(ValidationFailure):
            authenticate_user(store, hasher, identifiers, "alice", "wrong")
        assert store.get_user(alice.id).password_hash == legacy
