"""
auth/dependencies.py -- FastAPI Depends() helpers over the gate pipeline.

Two session sources are checked, in priority order (see auth/gate.py):
  1. Authorization: Bearer <token> header -- API clients.
  2. "jwt" cookie -- set by the signup/login/reset responses.

get_current_identity() runs the access gate and raises its rejection as a
domain error (api/main.py turns it into 401/403 with the shared envelope).
require_roles(*roles) appends the role authorizer to the same pipeline.

The result is a RequestContext handed to the route as a parameter -- the
request object itself is not mutated.

Layer rule: may import from fastapi (Depends/Request) because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.gate import AccessGate, Gate, GateContext, Reject, require
from auth.models import RequestContext

SESSION_COOKIE = "jwt"


def _authorize(request: Request, *extra: Gate) -> RequestContext:
    gate: AccessGate = request.app.state.access_gate
    context = GateContext(
        authorization=request.headers.get("Authorization"),
        cookie_token=request.cookies.get(SESSION_COOKIE),
    )
    result = gate.run(context, *extra)
    if isinstance(result, Reject):
        raise result.error
    return result.context.to_request_context()


def get_current_identity(request: Request) -> RequestContext:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: RequestContext = Depends(get_current_identity)): ...
    """
    return _authorize(request)


def require_roles(*roles: str) -> Callable[[Request], RequestContext]:
    """Dependency factory: authenticate, then require one of roles.

        @router.delete("/{id}")
        def route(ctx: RequestContext = Depends(require_roles("admin"))): ...
    """
    role_gate = require(*roles)

    def dependency(request: Request) -> RequestContext:
        return _authorize(request, role_gate)

    return dependency
