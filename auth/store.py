"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_session / _row_to_token are the mappers. Services and
route code never touch SQL directly.

Atomicity:
  Rotation and token consumption are single conditional UPDATE statements
  ("... WHERE refresh_hash = :expected AND revoked_at IS NULL",
  "... WHERE consumed_at IS NULL AND expires_at > :now"). The database
  applies the compare and the write as one step, so two concurrent requests
  presenting the same secret cannot both win -- the loser matches zero rows.
  A read-then-write in Python would race.

  verification_tokens carries UNIQUE(identifier, type). Issuing deletes every
  row for the pair and inserts the new one inside one transaction, so a
  concurrent issue for the same pair fails with IntegrityViolation instead of
  leaving two outstanding tokens.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision, +00:00 offset). Fixed width keeps lexical order equal to
chronological order, which the expires_at > :now comparison relies on.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/chitterauth.db unless DATABASE_URL is set.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Index, MetaData, String, Table, Text, UniqueConstraint, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Session, TokenType, User, VerificationToken
from core.errors import IntegrityViolation

logger = logging.getLogger("chitterauth.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'chitterauth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(26), primary_key=True),
    Column("login_hash", String(64), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text),
    Column("email_hash", String(64), unique=True),
    Column("phone_hash", String(64), unique=True),
    Column("email_verified_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(26), primary_key=True),  # ULID
    Column("user_id", String(26), nullable=False),
    Column("refresh_hash", String(64), nullable=False),  # SHA-256 hex of the secret
    Column("user_agent", Text),
    Column("ip", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # NULL = active
    Index("ix_sessions_user_id", "user_id"),
)

_verification_tokens = Table(
    "verification_tokens",
    _metadata,
    Column("id", String(26), primary_key=True),
    Column("user_id", String(26)),
    Column("identifier", String(255), nullable=False),
    Column("token_hash", String(64), nullable=False),
    Column("type", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("identifier", "type", name="uq_verification_identifier_type"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session and VerificationToken records.

    Usage:
        store = AuthStore()                                 # SQLite default
        store = AuthStore("postgresql://user:pw@host/db")   # PostgreSQL
        store.create_session(session)
        store.close()
    """

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user.

        Raises IntegrityViolation if the login handle, username, email or
        phone hash is already taken.
        """
        created_at = user.created_at or datetime.now(timezone.utc)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        login_hash=user.login_hash,
                        username=user.username,
                        password_hash=user.password_hash,
                        email_hash=user.email_hash,
                        phone_hash=user.phone_hash,
                        email_verified_at=_iso(user.email_verified_at),
                        created_at=_iso(created_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise IntegrityViolation("user already exists") from exc
        user.created_at = created_at
        return user

    def get_user(self, user_id: str) -> User | None:
        return self._get_user_where(_users.c.id == user_id)

    def get_user_by_login_hash(self, login_hash: str) -> User | None:
        return self._get_user_where(_users.c.login_hash == login_hash)

    def get_user_by_username(self, username: str) -> User | None:
        """Exact (case-sensitive) username match."""
        return self._get_user_where(_users.c.username == username)

    def get_user_by_email_hash(self, email_hash: str) -> User | None:
        return self._get_user_where(_users.c.email_hash == email_hash)

    def _get_user_where(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount > 0

    def mark_email_verified(self, user_id: str, when: datetime) -> bool:
        """Stamp email_verified_at once. Later calls leave the first stamp alone."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.email_verified_at.is_(None)))
                .values(email_verified_at=_iso(when))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    refresh_hash=session.refresh_hash,
                    user_agent=session.user_agent,
                    ip=session.ip,
                    created_at=_iso(session.created_at),
                    last_seen_at=_iso(session.last_seen_at),
                    revoked_at=_iso(session.revoked_at),
                )
            )
            conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self, user_id: str) -> list[Session]:
        """All sessions for a user, newest first. Ties on created_at fall back to id."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(_sessions.c.user_id == user_id)
                .order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def swap_refresh_hash(
        self,
        session_id: str,
        expected_hash: str,
        new_hash: str,
        when: datetime,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> Session:
        """Replace the refresh hash iff it still equals expected_hash and the session is active.

        Compare and write happen in one UPDATE. Raises IntegrityViolation when
        no row matched: the session was revoked, or another request rotated
        it first.
        """
        values: dict = {"refresh_hash": new_hash, "last_seen_at": _iso(when)}
        if user_agent is not None:
            values["user_agent"] = user_agent
        if ip is not None:
            values["ip"] = ip
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.refresh_hash == expected_hash)
                    & (_sessions.c.revoked_at.is_(None))
                )
                .values(**values)
            )
            conn.commit()
        if result.rowcount != 1:
            raise IntegrityViolation(f"refresh hash swap rejected for session {session_id}")
        session = self.get_session(session_id)
        if session is None:
            raise IntegrityViolation(f"session {session_id} disappeared after rotation")
        return session

    def revoke_session(self, session_id: str, when: datetime, user_id: str | None = None) -> bool:
        """Stamp revoked_at on an active session.

        Returns False when the session is unknown, already revoked, or (when
        user_id is given) owned by someone else. The ownership check is in
        the WHERE clause, not in the caller.
        """
        clause = (_sessions.c.id == session_id) & (_sessions.c.revoked_at.is_(None))
        if user_id is not None:
            clause = clause & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(clause).values(revoked_at=_iso(when)))
            conn.commit()
        return result.rowcount > 0

    def revoke_user_sessions(self, user_id: str, when: datetime) -> int:
        """Revoke every active session of a user. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=_iso(when))
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def replace_verification_token(self, record: VerificationToken) -> VerificationToken:
        """Delete every token for (identifier, type) and insert record, in one transaction.

        Raises IntegrityViolation if a concurrent issue for the same pair
        committed first.
        """
        created_at = record.created_at or datetime.now(timezone.utc)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _verification_tokens.delete().where(
                        (_verification_tokens.c.identifier == record.identifier)
                        & (_verification_tokens.c.type == record.type.value)
                    )
                )
                conn.execute(
                    _verification_tokens.insert().values(
                        id=record.id,
                        user_id=record.user_id,
                        identifier=record.identifier,
                        token_hash=record.token_hash,
                        type=record.type.value,
                        expires_at=_iso(record.expires_at),
                        consumed_at=_iso(record.consumed_at),
                        created_at=_iso(created_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise IntegrityViolation("concurrent verification token issue") from exc
        record.created_at = created_at
        return record

    def consume_verification_token(
        self,
        identifier: str,
        token_type: TokenType,
        token_hash: str,
        when: datetime,
    ) -> VerificationToken | None:
        """Atomically mark the matching unconsumed, unexpired token consumed.

        Returns the consumed record, or None if nothing matched (wrong token,
        expired, already consumed -- deliberately indistinguishable).
        """
        clause = (
            (_verification_tokens.c.identifier == identifier)
            & (_verification_tokens.c.type == token_type.value)
            & (_verification_tokens.c.token_hash == token_hash)
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _verification_tokens.update()
                .where(
                    clause
                    & (_verification_tokens.c.consumed_at.is_(None))
                    & (_verification_tokens.c.expires_at > _iso(when))
                )
                .values(consumed_at=_iso(when))
            )
            if result.rowcount != 1:
                conn.rollback()
                return None
            row = conn.execute(_verification_tokens.select().where(clause)).fetchone()
            conn.commit()
        return _row_to_token(row) if row is not None else None

    def get_verification_token(self, identifier: str, token_type: TokenType) -> VerificationToken | None:
        """Return the current token row for (identifier, type), consumed or not."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_tokens.select().where(
                    (_verification_tokens.c.identifier == identifier)
                    & (_verification_tokens.c.type == token_type.value)
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        login_hash=row.login_hash,
        username=row.username,
        password_hash=row.password_hash,
        email_hash=row.email_hash,
        phone_hash=row.phone_hash,
        email_verified_at=_parse(row.email_verified_at),
        created_at=_parse(row.created_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_hash=row.refresh_hash,
        user_agent=row.user_agent,
        ip=row.ip,
        created_at=_parse(row.created_at),
        last_seen_at=_parse(row.last_seen_at),
        revoked_at=_parse(row.revoked_at),
    )


def _row_to_token(row) -> VerificationToken:
    return VerificationToken(
        id=row.id,
        user_id=row.user_id,
        identifier=row.identifier,
        token_hash=row.token_hash,
        type=TokenType(row.type),
        expires_at=_parse(row.expires_at),
        consumed_at=_parse(row.consumed_at),
        created_at=_parse(row.created_at),
    )
