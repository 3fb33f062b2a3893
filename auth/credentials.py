"""
auth/credentials.py -- Password hashing, verification and the shared password rule.

Passwords: bcrypt used directly (no passlib wrapper). Bcrypt is the right
choice for low-entropy secrets because its cost factor makes brute-force
expensive. The work factor comes from Settings.bcrypt_rounds so the test
suite can run at the bcrypt minimum.

Timing equalization [C1]: a dummy hash is computed once per verifier at
construction. verify_or_dummy() always runs bcrypt, against the real hash
when there is one and against the dummy otherwise, so the response time of
a login does not reveal whether the email exists.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime

import bcrypt

from auth.models import Identity
from core.config import Settings
from core.errors import ValidationError

logger = logging.getLogger("authgate.auth.credentials")

# bcrypt refuses secrets longer than this many UTF-8 bytes.
BCRYPT_MAX_BYTES = 72


class CredentialVerifier:
    """bcrypt credential hashing plus the session-staleness check."""

    def __init__(self, settings: Settings) -> None:
        self._rounds = settings.bcrypt_rounds
        self.min_length = settings.password_min_length
        self._dummy_hash = self.hash_credential("authgate_timing_dummy")

    def hash_credential(self, plain: str) -> str:
        """Return a salted bcrypt hash of the plaintext password.

        Callers run check_password_pair() first, which rejects passwords over
        BCRYPT_MAX_BYTES. A 64-character cap is not enough on its own because
        non-ASCII characters take up to four bytes each.
        """
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    def verify_credential(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        if not hashed:
            return False
        encoded = plain.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            # No stored hash was made from a secret this long.
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash in storage -- treat as a mismatch, never a 500.
            logger.warning("Stored credential hash is malformed")
            return False

    def verify_or_dummy(self, plain: str, hashed: str | None) -> bool:
        """Like verify_credential(), but always pays the bcrypt cost [C1]."""
        if hashed is None:
            self.verify_credential(plain, self._dummy_hash)
            return False
        return self.verify_credential(plain, hashed)

    @staticmethod
    def changed_after(identity: Identity, issued_at: int) -> bool:
        """True if the identity's password changed after a token's iat.

        Compared at whole-second granularity because iat is whole seconds. A
        session issued in the same second as the change stays valid, which is
        what lets reset/update hand back a fresh session immediately.
        """
        changed = identity.password_changed_at
        if changed is None:
            return False
        return int(changed.timestamp()) > issued_at

    def check_password_pair(self, password: str | None, confirm_password: str | None) -> None:
        """The one password rule shared by signup, reset and update.

        Raises ValidationError when either field is missing, they differ, the
        password is shorter than password_min_length, or its UTF-8 encoding
        is longer than bcrypt accepts.
        """
        if not password or not confirm_password:
            raise ValidationError("Provide both password and confirmPassword.")
        if password != confirm_password:
            raise ValidationError("Passwords are not the same.")
        if len(password) < self.min_length:
            raise ValidationError(f"Password must be at least {self.min_length} characters.")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes long.")


def stamp_password_change(identity: Identity, password_hash: str, when: datetime) -> None:
    """Install a new credential hash and record when it changed."""
    identity.password_hash = password_hash
    identity.password_changed_at = when
