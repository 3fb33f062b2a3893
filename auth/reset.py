"""
auth/reset.py -- Forgot-password / reset-password handshake.

Flow:
  1. request_reset(email): issue a (plaintext, digest) pair, store the digest
     and an expiry on the identity, mail the plaintext inside a reset URL.
  2. reset_password(plaintext, ...): look the identity up by digest AND
     unexpired, set the new password, clear the token, sign the user in.

Security:
  The plaintext token exists only in the outgoing email and in the user's
  request. It is never stored and never logged. Storage holds the SHA-256
  digest only.

  If mail delivery fails for any reason, the stored digest/expiry are
  cleared before the error surfaces. NotifierError becomes DeliveryError
  and anything else is re-raised. There is never a live token on the
  record that nobody received.

  One identity holds at most one reset token. A new request overwrites the
  previous digest. Two concurrent requests for the same identity race and
  the last write wins, so only the last email's link works. That is
  accepted: both emails go to the same mailbox.

Layer rule: no imports from api/. The notifier is injected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.credentials import CredentialVerifier, stamp_password_change
from auth.models import IssuedSession
from auth.store import UserStore, normalize_email
from auth.tokens import TokenCodec
from core.config import Settings
from core.errors import DeliveryError, InvalidTokenError, NotFoundError, ValidationError
from notify.email import Notifier, NotifierError, redact_email

logger = logging.getLogger("authgate.auth.reset")

RESET_PATH = "/api/v1/users/resetpassword/"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResetCoordinator:
    """Owns the reset-token lifecycle for one store/notifier pair.

    now is injectable so tests can move the clock across the expiry
    boundary without sleeping.
    """

    def __init__(
        self,
        store: UserStore,
        codec: TokenCodec,
        verifier: CredentialVerifier,
        notifier: Notifier,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.verifier = verifier
        self.notifier = notifier
        self.ttl = timedelta(seconds=settings.reset_token_ttl_seconds)
        self.now = now

    def request_reset(self, email: str | None, base_url: str) -> None:
        """Issue a reset token for email and mail it out.

        Raises NotFoundError when no identity has that email and
        DeliveryError when the notifier fails (after clearing the token).
        """
        if not email:
            raise ValidationError("Please provide your email address.")
        identity = self.store.find_by_email(normalize_email(email))
        if identity is None:
            raise NotFoundError("There is no user with that email address.")

        plaintext, digest = self.codec.issue_reset_token()
        identity.reset_token_digest = digest
        identity.reset_expires_at = self.now() + self.ttl
        self.store.save(identity, validate=False)

        reset_url = f"{base_url.rstrip('/')}{RESET_PATH}{plaintext}"
        minutes = int(self.ttl.total_seconds() // 60)
        body = (
            f"Forgot your password? Submit a PATCH request with your new password and "
            f"confirmPassword to: {reset_url}\n"
            f"If you didn't forget your password, please ignore this email."
        )
        try:
            self.notifier.send(
                to_email=identity.email,
                subject=f"Your password reset token (valid for {minutes} minutes)",
                body=body,
            )
        except Exception as exc:
            identity.clear_reset_token()
            self.store.save(identity, validate=False)
            logger.error("Reset email to %s failed; token cleared", redact_email(identity.email))
            if isinstance(exc, NotifierError):
                raise DeliveryError() from exc
            raise

        logger.info("Password reset requested for identity %s", identity.id)

    def reset_password(
        self,
        plaintext: str | None,
        password: str | None,
        confirm_password: str | None,
    ) -> IssuedSession:
        """Consume a reset token, set the new password and issue a session.

        Raises InvalidTokenError when the token is unknown, already used, or
        expired. The three cases are indistinguishable to the caller.
        """
        identity = None
        if plaintext:
            identity = self.store.find_by_reset_digest(self.codec.digest_reset_token(plaintext), self.now())
        if identity is None or not self.codec.verify_reset_token(plaintext, identity.reset_token_digest):
            raise InvalidTokenError()

        self.verifier.check_password_pair(password, confirm_password)

        now = self.now()
        stamp_password_change(identity, self.verifier.hash_credential(password), now)
        identity.clear_reset_token()
        self.store.save(identity)
        logger.info("Password reset completed for identity %s", identity.id)
        return IssuedSession(artifact=self.codec.issue_session(identity.id, now=now), identity=identity)
