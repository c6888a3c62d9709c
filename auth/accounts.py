"""
auth/accounts.py -- Account lookup, registration and password authentication.

Glue between the credential hasher, the private-identifier hasher and the
user table. Profile data is out of scope; an account here is only what the
login, refresh and verification flows need.

Timing equalization: authenticate_user() always runs one password
verification, real or dummy, whether or not the identifier resolves to an
account. Returning early for unknown identifiers would let an attacker
enumerate accounts by response time.

Failures raise ValidationFailure with an internal reason. The API layer logs
the reason and answers every failure with the same generic body.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ulid import ULID

from auth.models import User
from auth.passwords import CredentialHasher
from auth.private import PrivateIdentifierHasher
from auth.store import AuthStore
from core.errors import IntegrityViolation, ValidationFailure

logger = logging.getLogger("chitterauth.auth.accounts")


def find_account(store: AuthStore, identifiers: PrivateIdentifierHasher, identifier: str) -> User | None:
    """Resolve a login handle, username or email address to an account.

    Lookup order: login handle hash, email hash (email-like input only),
    then public username.
    """
    identifier = identifier.strip()
    if not identifier:
        return None
    digest = identifiers.hash_identifier(identifier)
    user = store.get_user_by_login_hash(digest)
    if user is None and "@" in identifier:
        user = store.get_user_by_email_hash(digest)
    if user is None:
        user = store.get_user_by_username(identifier)
    return user


def authenticate_user(
    store: AuthStore,
    hasher: CredentialHasher,
    identifiers: PrivateIdentifierHasher,
    identifier: str,
    password: str,
) -> User:
    """Return the account for identifier if password matches.

    Raises ValidationFailure("unknown_identifier" | "bad_password"). Stored
    hashes from an older algorithm or cost setting are upgraded in place on
    success.
    """
    user = find_account(store, identifiers, identifier)
    if user is None or not user.password_hash:
        # Equalize timing -- do NOT return before running the hasher.
        hasher.verify_dummy(password)
        raise ValidationFailure("unknown_identifier", user_id=user.id if user else None)
    if not hasher.verify(password, user.password_hash):
        raise ValidationFailure("bad_password", user_id=user.id)
    if hasher.needs_rehash(user.password_hash):
        user.password_hash = hasher.hash(password)
        store.update_password_hash(user.id, user.password_hash)
        logger.info("Upgraded password hash for user %s to %s", user.id, hasher.algorithm)
    return user


def register_user(
    store: AuthStore,
    hasher: CredentialHasher,
    identifiers: PrivateIdentifierHasher,
    *,
    login_id: str,
    password: str,
    username: str,
    email: str | None = None,
    phone: str | None = None,
) -> User:
    """Create an account. Only hashes of login_id, email and phone are stored.

    Raises IntegrityViolation if any unique value is already taken. The login
    handle and username share one namespace in find_account(), so a handle
    equal to someone's username (or email) is taken too, and vice versa.
    """
    login_hash = identifiers.hash_identifier(login_id)
    if (
        store.get_user_by_username(login_id.strip()) is not None
        or ("@" in login_id and store.get_user_by_email_hash(login_hash) is not None)
        or store.get_user_by_login_hash(identifiers.hash_identifier(username)) is not None
    ):
        raise IntegrityViolation("login handle collides with an existing account identifier")
    user = User(
        id=str(ULID()),
        login_hash=login_hash,
        username=username.strip(),
        password_hash=hasher.hash(password),
        email_hash=identifiers.hash_identifier(email) if email and email.strip() else None,
        phone_hash=identifiers.hash_identifier(phone) if phone and phone.strip() else None,
        created_at=datetime.now(timezone.utc),
    )
    return store.create_user(user)
