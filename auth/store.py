"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_identity / _identity_to_row are the
mappers. Service and route code never touches SQL directly.

The authentication core only talks to this class through find_by_id,
find_by_email, find_by_reset_digest, create and save. Field validation
(non-empty name, well-formed email, known role) lives here and is not
repeated by the callers.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by a UNIQUE constraint. Emails are stored
  lower-cased and stripped so "Ana@X.com" and "ana@x.com" collide.

  Timestamps are stored as fixed-width UTC ISO-8601 strings
  (YYYY-MM-DDTHH:MM:SS.ffffff+00:00). Fixed width keeps SQL string
  comparison equivalent to chronological comparison, which
  find_by_reset_digest relies on.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import DEFAULT_ROLE, ROLES, Identity
from core.errors import ConflictError, ValidationError

logger = logging.getLogger("authgate.auth.store")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NAME_MAX = 100
_EMAIL_MAX = 254

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# Fields the admin surface may change through update_fields().
_PATCHABLE_FIELDS = frozenset({"name", "email", "role", "is_active"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(_NAME_MAX), nullable=False),
    Column("email", String(_EMAIL_MAX), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default=DEFAULT_ROLE),
    Column("password_hash", Text, nullable=False),
    Column("password_changed_at", String(32)),
    Column("reset_token_digest", String(64), index=True),  # SHA-256 hex
    Column("reset_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def validate_identity(identity: Identity) -> None:
    """Field rules enforced on create and on validated saves."""
    if not identity.name or not identity.name.strip():
        raise ValidationError("Please tell us your name.")
    if len(identity.name) > _NAME_MAX:
        raise ValidationError(f"Name must be at most {_NAME_MAX} characters.")
    if len(identity.email) > _EMAIL_MAX or not EMAIL_PATTERN.match(identity.email):
        raise ValidationError("Please provide a valid email.")
    if identity.role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
    if not identity.password_hash:
        raise ValidationError("Please provide a password.")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Identity records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        ana = store.create({"name": "Ana", "email": "ana@x.com", "password_hash": h})
        same = store.find_by_email("ANA@x.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///authgate.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_id(self, identity_id: int) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_reset_digest(self, digest: str, now: datetime) -> Identity | None:
        """Return the identity holding this reset digest, only if it has not expired.

        Both conditions are in one WHERE clause so the caller cannot tell an
        unknown token from an expired one.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.reset_token_digest == digest) & (_users.c.reset_expires_at > _ts(now))
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_identities(self) -> list[Identity]:
        """Return all identities ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_identity(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, fields: Mapping[str, Any]) -> Identity:
        """Validate and insert a new identity; return it with id and created_at set.

        fields must carry an already-hashed password under "password_hash".
        Raises ValidationError on bad fields and ConflictError if the email
        is already registered.
        """
        identity = Identity(
            name=(fields.get("name") or "").strip(),
            email=normalize_email(fields.get("email")),
            role=fields.get("role") or DEFAULT_ROLE,
            password_hash=fields.get("password_hash"),
        )
        validate_identity(identity)
        identity.created_at = datetime.now(timezone.utc)
        values = _identity_to_row(identity)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError() from exc
        identity.id = result.inserted_primary_key[0]
        logger.info("Identity %s created (role=%s)", identity.id, identity.role)
        return identity

    def save(self, identity: Identity, validate: bool = True) -> None:
        """Write every mutable field of an existing identity back to storage.

        validate=False skips field validation. The reset-token flow uses it
        to persist only token bookkeeping without re-checking the profile.
        """
        if identity.id is None:
            raise ValueError("save() requires a persisted identity (id is None)")
        identity.email = normalize_email(identity.email)
        if validate:
            validate_identity(identity)
        values = _identity_to_row(identity)
        values.pop("created_at")
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.update().where(_users.c.id == identity.id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError() from exc

    def update_fields(self, identity_id: int, **fields: Any) -> Identity | None:
        """Apply profile changes to one identity and return the saved record.

        Only name, email, role and is_active can change here; credential and
        reset-token fields have their own flows. Returns None if no identity
        has that id. Raises ValidationError on an unknown field or a record
        that fails validation and ConflictError on a taken email.
        """
        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}.")
        identity = self.find_by_id(identity_id)
        if identity is None:
            return None
        for name, value in fields.items():
            setattr(identity, name, value.strip() if name == "name" else value)
        self.save(identity)
        logger.info("Identity %s updated (%s)", identity_id, ", ".join(sorted(fields)))
        return identity

    def delete(self, identity_id: int) -> bool:
        """Permanently delete an identity. Returns True if a row was removed.

        Outstanding sessions for the identity fail at the access gate's
        identity-resolution step afterwards.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == identity_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _identity_to_row(identity: Identity) -> dict:
    return {
        "name": identity.name,
        "email": identity.email,
        "role": identity.role,
        "password_hash": identity.password_hash,
        "password_changed_at": _ts(identity.password_changed_at),
        "reset_token_digest": identity.reset_token_digest,
        "reset_expires_at": _ts(identity.reset_expires_at),
        "created_at": _ts(identity.created_at),
        "is_active": 1 if identity.is_active else 0,
    }


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        password_hash=row.password_hash,
        password_changed_at=_parse_ts(row.password_changed_at),
        reset_token_digest=row.reset_token_digest,
        reset_expires_at=_parse_ts(row.reset_expires_at),
        created_at=_parse_ts(row.created_at),
        is_active=bool(row.is_active),
    )
