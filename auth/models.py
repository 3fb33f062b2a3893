"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, next to no logic). Stores and
services do the work; these types only own the domain shape.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLES: tuple[str, ...] = ("standard", "moderator", "admin")
DEFAULT_ROLE = "standard"


@dataclass
class Identity:
    """One registered user.

    password_hash, reset_token_digest and reset_expires_at are secrets or
    secret-adjacent. They are never serialized outward -- use public_dict()
    (or the API response models) for anything that leaves the process.

    password_changed_at stays None until the first password change after
    signup. The access gate compares it against a session's issuance time.
    """

    name: str
    email: str
    role: str = DEFAULT_ROLE
    id: int | None = None
    password_hash: str | None = None
    password_changed_at: datetime | None = None
    reset_token_digest: str | None = None
    reset_expires_at: datetime | None = None
    created_at: datetime | None = None
    is_active: bool = True

    def public_dict(self) -> dict:
        """Outward representation: identity fields only, no credential material."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def clear_reset_token(self) -> None:
        self.reset_token_digest = None
        self.reset_expires_at = None


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    identity_id: int
    issued_at: int  # JWT iat, whole seconds since the epoch


@dataclass(frozen=True)
class SessionArtifact:
    """A freshly signed session token plus its lifetime, as handed to the client."""

    token: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


@dataclass(frozen=True)
class IssuedSession:
    """Result of signup, login, reset and password update."""

    artifact: SessionArtifact
    identity: Identity


@dataclass(frozen=True)
class RequestContext:
    """Identity established by the access gate for one request."""

    identity: Identity
    claims: SessionClaims
