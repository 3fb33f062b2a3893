"""
api/routes/v1/auth.py -- Signup, login and password lifecycle endpoints.

Routes (mounted under /api/v1/users):
  POST  /signup                 -- create account; 201 + session
  POST  /login                  -- password login; 200 + session
  POST  /logout                 -- clear session cookie; 200
  POST  /forgotpassword         -- mail a reset link; 200
  PATCH /resetpassword/{token}  -- consume reset token; 200 + session
  PATCH /updatepassword         -- change password (requires auth); 200 + session
  GET   /me                     -- current identity (requires auth)

Security:
  [C1] SessionIssuer.login() provides timing equalization -- never inline
       find_by_email() + verify_credential() here.
  [M5] Cache-Control: no-store on every response carrying a session token.

Handlers that hash or check passwords are plain `def`, not `async def`.
FastAPI runs them in its worker thread pool, so a bcrypt computation never
blocks the event loop serving other requests.

Errors are raised as core.errors domain exceptions; api/main.py renders them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ResetPasswordRequest,
    SessionResponse,
    SignupRequest,
    UpdatePasswordRequest,
    UserResponse,
)
from auth.dependencies import SESSION_COOKIE, get_current_identity
from auth.issuer import SessionIssuer
from auth.models import IssuedSession, RequestContext
from auth.reset import ResetCoordinator
from core.config import Settings

# Auth policy:
# - POST  /signup, /login, /logout, /forgotpassword:  public
# - PATCH /resetpassword/{token}:                     public -- the token is the credential
# - PATCH /updatepassword, GET /me:                   requires auth (get_current_identity)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_response(request: Request, issued: IssuedSession, status_code: int) -> JSONResponse:
    """Build the session JSON body and mirror the token into an httpOnly cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: HTTPS only when SECURE_COOKIES=true or ENVIRONMENT=production.
    """
    settings: Settings = request.app.state.settings
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse.from_issued(issued).model_dump(),
    )
    resp.set_cookie(
        SESSION_COOKIE,
        value=issued.artifact.token,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        max_age=settings.cookie_expire_days * 24 * 3600,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=SessionResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register a new identity and sign it in."""
    issuer: SessionIssuer = request.app.state.issuer
    issued = issuer.signup(body.name, body.email, body.password, body.confirm_password, body.role)
    return _session_response(request, issued, 201)


@router.post("/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    The same 401 body is returned for an unknown email and a wrong password.
    """
    issuer: SessionIssuer = request.app.state.issuer
    issued = issuer.login(body.email, body.password)
    return _session_response(request, issued, 200)


@router.post("/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie. Bearer tokens simply expire."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.post("/forgotpassword", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Mail a one-time reset link, valid for RESET_TOKEN_TTL_SECONDS."""
    # Links are built from PUBLIC_BASE_URL, never from the client-supplied Host header.
    settings: Settings = request.app.state.settings
    coordinator: ResetCoordinator = request.app.state.reset_coordinator
    coordinator.request_reset(body.email, settings.public_base_url)
    return MessageResponse(message="Token sent to email.")


@router.patch("/resetpassword/{token}", response_model=SessionResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password with a reset token and sign the user in."""
    coordinator: ResetCoordinator = request.app.state.reset_coordinator
    issued = coordinator.reset_password(token, body.password, body.confirm_password)
    return _session_response(request, issued, 200)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.patch("/updatepassword", response_model=SessionResponse)
def update_password(
    request: Request,
    body: UpdatePasswordRequest,
    ctx: RequestContext = Depends(get_current_identity),
) -> JSONResponse:
    """Change the current identity's password. Sessions issued earlier become stale."""
    issuer: SessionIssuer = request.app.state.issuer
    issued = issuer.update_password(ctx.identity, body.current_password, body.password, body.confirm_password)
    return _session_response(request, issued, 200)


@router.get("/me", response_model=UserResponse)
def me(ctx: RequestContext = Depends(get_current_identity)) -> UserResponse:
    """Return the identity bound to the presented session."""
    return UserResponse.from_identity(ctx.identity)
