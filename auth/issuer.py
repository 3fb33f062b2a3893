"""
auth/issuer.py -- Signup, login and authenticated password change.

SessionIssuer is the only place that turns credentials into a session. It
validates presence of input, delegates hashing/checking to
CredentialVerifier, persistence to UserStore, and signing to TokenCodec.

Security:
  [C1] login() always runs bcrypt, against a dummy hash when the email is
       unknown, and raises the same AuthenticationError for "no such user",
       "wrong password" and "deactivated account". Neither the message nor
       the response time says which one happened.

  signup() accepts a client-chosen role, admin included, while
  allow_role_selection is on (Settings.signup_role_selection).

  Every password change stamps password_changed_at, which makes every
  session issued before it stale at the access gate.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.credentials import CredentialVerifier, stamp_password_change
from auth.models import DEFAULT_ROLE, Identity, IssuedSession
from auth.store import UserStore, normalize_email
from auth.tokens import TokenCodec
from core.errors import AuthenticationError, ValidationError

logger = logging.getLogger("authgate.auth.issuer")


class SessionIssuer:
    def __init__(
        self,
        store: UserStore,
        verifier: CredentialVerifier,
        codec: TokenCodec,
        allow_role_selection: bool = True,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.codec = codec
        # Public signup may claim any role, admin included, unless this is off.
        self.allow_role_selection = allow_role_selection

    def _issue(self, identity: Identity) -> IssuedSession:
        return IssuedSession(artifact=self.codec.issue_session(identity.id), identity=identity)

    def signup(
        self,
        name: str | None,
        email: str | None,
        password: str | None,
        confirm_password: str | None,
        role: str | None = None,
    ) -> IssuedSession:
        """Register a new identity and sign it in.

        Raises ValidationError for missing/mismatched input or a requested
        role when role selection is off (the store adds its own field rules)
        and ConflictError for a taken email.
        """
        if not name or not email:
            raise ValidationError("Provide name, email, password and confirmPassword.")
        if role and role != DEFAULT_ROLE and not self.allow_role_selection:
            raise ValidationError("A role cannot be chosen at signup.")
        self.verifier.check_password_pair(password, confirm_password)

        identity = self.store.create(
            {
                "name": name,
                "email": email,
                "role": role or DEFAULT_ROLE,
                "password_hash": self.verifier.hash_credential(password),
            }
        )
        return self._issue(identity)

    def login(self, email: str | None, password: str | None) -> IssuedSession:
        """Check email/password and issue a session.

        Missing fields are a 400 -- there is nothing to enumerate yet.
        Everything after that collapses into one AuthenticationError.
        """
        if not email or not password:
            raise ValidationError("Enter both email and password.")

        identity = self.store.find_by_email(normalize_email(email))
        stored_hash = identity.password_hash if identity is not None else None
        # Equalize timing -- do NOT return before bcrypt has run [C1]
        matched = self.verifier.verify_or_dummy(password, stored_hash)
        if identity is None or not matched or not identity.is_active:
            logger.info("Failed login attempt")
            raise AuthenticationError()
        return self._issue(identity)

    def update_password(
        self,
        identity: Identity,
        current_password: str | None,
        password: str | None,
        confirm_password: str | None,
    ) -> IssuedSession:
        """Change the password of an already-authenticated identity.

        The current password is re-checked even though the session is valid.
        A stolen session alone must not be enough to take over the account.
        """
        if not current_password or not self.verifier.verify_credential(current_password, identity.password_hash):
            raise AuthenticationError("Your current password is wrong.")
        self.verifier.check_password_pair(password, confirm_password)

        stamp_password_change(identity, self.verifier.hash_credential(password), datetime.now(timezone.utc))
        self.store.save(identity)
        logger.info("Identity %s changed password", identity.id)
        return self._issue(identity)
