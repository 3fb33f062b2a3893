"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
  2. log_requests   -- one log line per request with latency

Lifespan builds the service graph once (store, codec, verifier, notifier,
issuer, reset coordinator, access gate) and hangs it on app.state. Route
handlers and auth dependencies only read app.state -- they never construct
collaborators themselves. Tests swap the lifespan and call
build_services() with their own settings, store and notifier.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialVerifier
from auth.gate import AccessGate
from auth.issuer import SessionIssuer
from auth.reset import ResetCoordinator
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.errors import AuthGateError
from notify.email import Notifier, build_notifier

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Service graph
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, settings: Settings, store: UserStore, notifier: Notifier) -> None:
    """Wire the auth core and attach it to app.state.

    Configuration is passed down explicitly; nothing below this point reads
    environment variables.
    """
    codec = TokenCodec(settings)
    verifier = CredentialVerifier(settings)
    app.state.settings = settings
    app.state.user_store = store
    app.state.issuer = SessionIssuer(store, verifier, codec, settings.signup_role_selection)
    app.state.reset_coordinator = ResetCoordinator(store, codec, verifier, notifier, settings)
    app.state.access_gate = AccessGate(codec, verifier, store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service graph on startup; dispose the DB engine on shutdown."""
    settings = get_settings()
    logger.info("authgate API starting up (environment=%s)", settings.environment)
    store = UserStore(settings.database_url)
    build_services(app, settings, store, build_notifier(settings))
    logger.info("Auth services initialized")

    yield

    store.close()
    logger.info("authgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate API",
    description="Signup, login, password reset and session-gated user management.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    # Path only, never the query string. Reset tokens travel in the path of
    # /resetpassword/{token}, so that prefix is redacted too.
    path = request.url.path
    if "/resetpassword/" in path:
        path = path.split("/resetpassword/", 1)[0] + "/resetpassword/<redacted>"
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1/users", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthGateError)
async def auth_gate_error_handler(request: Request, exc: AuthGateError) -> JSONResponse:
    """Render a domain error with its fixed status and safe message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    resp = _error(exc.status_code, exc.code, exc.message, exc.detail)
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or params fail validation."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for routing-level HTTP exceptions (404, 405)."""
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
