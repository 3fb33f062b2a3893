"""
auth/tokens.py -- Session JWTs and password-reset tokens.

Security design decisions:
  Sessions: python-jose JWT signed with Settings.secret_key using
       Settings.jwt_algorithm (HS256 by default). Claims are the identity id,
       iat and exp -- nothing else. The token is stateless: there is no
       server-side record, so validity is signature + expiry only. Staleness
       after a password change is checked by the access gate, not here.

       decode() is always called with algorithms=[configured algorithm] so a
       token carrying "alg": "none" or a different HMAC variant is rejected.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is stored on the identity; the plaintext goes to the
       user once and is never persisted or logged. A storage leak therefore
       cannot be replayed as a reset link. bcrypt's slowness is unnecessary
       for a random 256-bit value and would rule out lookup by digest.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import SessionArtifact, SessionClaims
from core.config import Settings

logger = logging.getLogger("authgate.auth.tokens")


class InvalidSession(Exception):
    """Token is malformed, tampered with, or signed with another key/algorithm."""


class ExpiredSession(Exception):
    """Token signature is fine but its exp claim is in the past."""


class TokenCodec:
    """Creates and verifies session JWTs and reset tokens.

    Usage:
        codec = TokenCodec(get_settings())
        artifact = codec.issue_session(identity.id)
        claims = codec.verify_session(artifact.token)
    """

    def __init__(self, settings: Settings) -> None:
        self._secret_key = settings.secret_key
        self._algorithm = settings.jwt_algorithm
        self._expire = timedelta(seconds=settings.token_expire_seconds)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, identity_id: int, now: datetime | None = None) -> SessionArtifact:
        """Sign a session token for identity_id, valid for token_expire_seconds."""
        # iat is serialized as whole seconds; truncate here so the artifact
        # and the claim agree exactly.
        issued_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        expires_at = issued_at + self._expire
        payload = {
            "id": identity_id,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return SessionArtifact(token=token, issued_at=issued_at, expires_at=expires_at)

    def verify_session(self, token: str) -> SessionClaims:
        """Decode and verify a session token.

        Raises ExpiredSession if the token is past exp, InvalidSession for any
        other failure (bad signature, wrong algorithm, missing claims).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredSession("session token has expired") from exc
        except JWTError as exc:
            raise InvalidSession("session token failed verification") from exc

        identity_id = payload.get("id")
        issued_at = payload.get("iat")
        if not isinstance(identity_id, int) or not isinstance(issued_at, int):
            raise InvalidSession("session token is missing required claims")
        return SessionClaims(identity_id=identity_id, issued_at=issued_at)

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    def issue_reset_token(self) -> tuple[str, str]:
        """Return (plaintext, digest). Send the plaintext, store the digest."""
        plaintext = secrets.token_hex(32)
        return plaintext, self.digest_reset_token(plaintext)

    @staticmethod
    def digest_reset_token(plaintext: str) -> str:
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    def verify_reset_token(self, plaintext: str, stored_digest: str | None) -> bool:
        """Constant-time comparison of a presented token against the stored digest."""
        if not plaintext or not stored_digest:
            return False
        return hmac.compare_digest(self.digest_reset_token(plaintext), stored_digest)
