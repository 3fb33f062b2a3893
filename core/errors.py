"""
core/errors.py -- Domain error taxonomy for authgate.

Every error the authentication core raises on purpose is an AuthGateError.
Each subclass fixes the HTTP status and a machine-readable code; the message
is chosen by the raiser and must be safe to show to an unauthenticated
client. api/main.py maps these onto the shared ErrorResponse envelope --
route handlers never build error responses by hand.

Messages for 401s are intentionally generic. Do not put the branch that
failed ("no such user", "signature mismatch", ...) in the message; log it
instead if it matters.

Layer rule: core/ is the kernel. No imports from api/, auth/, or notify/.
"""

from __future__ import annotations


class AuthGateError(Exception):
    """Base class for errors that surface to the HTTP boundary."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AuthGateError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class ConflictError(AuthGateError):
    status_code = 409
    code = "conflict"
    default_message = "A user with that email already exists."


class AuthenticationError(AuthGateError):
    """Credentials were presented but did not check out."""

    status_code = 401
    code = "bad_credentials"
    default_message = "Incorrect email or password."


class UnauthenticatedError(AuthGateError):
    """No usable session on a protected request."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class ForbiddenError(AuthGateError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this operation."


class NotFoundError(AuthGateError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InvalidTokenError(AuthGateError):
    """Password reset token is unknown, consumed, or expired."""

    status_code = 400
    code = "invalid_token"
    default_message = "Token is invalid or has expired."


class DeliveryError(AuthGateError):
    status_code = 500
    code = "delivery_failed"
    default_message = "There was an error sending the email. Try again later."
