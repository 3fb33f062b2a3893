"""
auth/gate.py -- Access gate and role authorizer as an explicit gate pipeline.

A protected request walks this chain, stopping at the first rejection:

    extract_token -> verify_token -> resolve_identity -> reject_stale -> [require(roles)]
    NoToken          TokenExtracted   TokenVerified       IdentityResolved  NotStale -> Authorized

Each gate is a plain callable GateContext -> GateResult. A GateResult is
either Proceed(context) carrying an updated (new) context, or Reject(error)
carrying the domain error to surface. Contexts are frozen; gates return a
copy instead of mutating a shared request object.

Every access-gate rejection is UnauthenticatedError with the same generic
message. The reason is logged at debug level only.

Layer rule: no imports from api/ or notify/. FastAPI adapters for this
module live in auth/dependencies.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Union

from auth.credentials import CredentialVerifier
from auth.models import Identity, RequestContext, SessionClaims
from auth.store import UserStore
from auth.tokens import ExpiredSession, InvalidSession, TokenCodec
from core.errors import AuthGateError, ForbiddenError, UnauthenticatedError

logger = logging.getLogger("authgate.auth.gate")


@dataclass(frozen=True)
class GateContext:
    """What is known about a request at a given point in the pipeline."""

    authorization: str | None = None  # raw Authorization header
    cookie_token: str | None = None  # session cookie value, if any
    token: str | None = None
    claims: SessionClaims | None = None
    identity: Identity | None = None

    def to_request_context(self) -> RequestContext:
        if self.identity is None or self.claims is None:
            raise RuntimeError("gate pipeline finished without an identity")
        return RequestContext(identity=self.identity, claims=self.claims)


@dataclass(frozen=True)
class Proceed:
    context: GateContext


@dataclass(frozen=True)
class Reject:
    error: AuthGateError


GateResult = Union[Proceed, Reject]
Gate = Callable[[GateContext], GateResult]


def _unauthenticated(reason: str) -> Reject:
    logger.debug("Rejected request: %s", reason)
    return Reject(UnauthenticatedError("You are not logged in. Please log in to get access."))


# ---------------------------------------------------------------------------
# Access gate
# ---------------------------------------------------------------------------


def extract_token(context: GateContext) -> GateResult:
    """Take the token from 'Authorization: Bearer <token>', else from the session cookie."""
    token: str | None = None
    header = context.authorization or ""
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        token = credentials.strip()
    elif context.cookie_token:
        token = context.cookie_token
    if not token:
        return _unauthenticated("no token")
    return Proceed(replace(context, token=token))


class AccessGate:
    """Establishes identity for protected requests.

    Usage:
        gate = AccessGate(codec, verifier, store)
        result = gate.run(GateContext(authorization="Bearer ..."), require("admin"))
        if isinstance(result, Reject):
            raise result.error
    """

    def __init__(self, codec: TokenCodec, verifier: CredentialVerifier, store: UserStore) -> None:
        self.codec = codec
        self.verifier = verifier
        self.store = store

    def verify_token(self, context: GateContext) -> GateResult:
        try:
            claims = self.codec.verify_session(context.token or "")
        except ExpiredSession:
            return _unauthenticated("expired session")
        except InvalidSession:
            return _unauthenticated("invalid session")
        return Proceed(replace(context, claims=claims))

    def resolve_identity(self, context: GateContext) -> GateResult:
        identity = self.store.find_by_id(context.claims.identity_id)
        if identity is None or not identity.is_active:
            # Deleted or deactivated after the token was issued.
            return _unauthenticated("identity no longer exists")
        return Proceed(replace(context, identity=identity))

    def reject_stale(self, context: GateContext) -> GateResult:
        if self.verifier.changed_after(context.identity, context.claims.issued_at):
            return _unauthenticated("password changed after token issuance")
        return Proceed(context)

    @property
    def gates(self) -> tuple[Gate, ...]:
        return (extract_token, self.verify_token, self.resolve_identity, self.reject_stale)

    def run(self, context: GateContext, *extra: Gate) -> GateResult:
        """Run the access gates, then any extra gates (e.g. require(...)), in order."""
        for gate in (*self.gates, *extra):
            result = gate(context)
            if isinstance(result, Reject):
                return result
            context = result.context
        return Proceed(context)


# ---------------------------------------------------------------------------
# Role authorizer
# ---------------------------------------------------------------------------


def require(*allowed_roles: str) -> Gate:
    """Return a gate that only lets identities with one of allowed_roles through.

    Must run after the access gate -- it reads context.identity and does not
    establish it.
    """
    allowed = frozenset(allowed_roles)

    def role_gate(context: GateContext) -> GateResult:
        if context.identity is None:
            raise RuntimeError("require() ran before the access gate resolved an identity")
        if context.identity.role not in allowed:
            return Reject(ForbiddenError())
        return Proceed(context)

    return role_gate
