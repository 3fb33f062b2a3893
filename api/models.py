"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request fields that the auth core checks for presence are Optional here, so a
missing password reaches SessionIssuer and fails with its own message rather
than a generic schema error. Wire names follow the existing clients
(confirmPassword, currentPassword); Python names stay snake_case.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity, IssuedSession

# Character cap only. The 72-byte bcrypt limit is enforced by
# CredentialVerifier.check_password_pair.
_PASSWORD_MAX = 64


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _RequestModel(BaseModel):
    # No str_strip_whitespace: passwords are taken verbatim. The store
    # normalizes names and emails itself.
    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(_RequestModel):
    """Request body for POST /api/v1/users/signup."""

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    confirm_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX, alias="confirmPassword")
    role: Optional[str] = Field(default=None, max_length=30)


class LoginRequest(_RequestModel):
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)


class ForgotPasswordRequest(_RequestModel):
    email: Optional[str] = Field(default=None, max_length=254)


class ResetPasswordRequest(_RequestModel):
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    confirm_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX, alias="confirmPassword")


class UpdatePasswordRequest(_RequestModel):
    current_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX, alias="currentPassword")
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    confirm_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX, alias="confirmPassword")


class UserPatch(_RequestModel):
    """Request body for PATCH /api/v1/users/{id}. Admin only; passwords are not patchable here."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)
    role: Optional[str] = Field(default=None, max_length=30)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public identity fields. Never carries password or reset-token material."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    is_active: bool = True
    created_at: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        """Factory Method: the Identity -> wire mapping lives beside the wire model."""
        public = identity.public_dict()
        return cls(is_active=identity.is_active, **public)


class SessionData(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class SessionResponse(BaseModel):
    """Response body for signup, login, reset and password update."""

    model_config = ConfigDict(frozen=True)

    status: str = "success"
    token: str
    token_type: str = "bearer"
    expires_in: int
    data: SessionData

    @classmethod
    def from_issued(cls, issued: IssuedSession) -> "SessionResponse":
        return cls(
            token=issued.artifact.token,
            expires_in=issued.artifact.expires_in,
            data=SessionData(user=UserResponse.from_identity(issued.identity)),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "success"
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
