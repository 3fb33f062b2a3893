"""
api/routes/v1/users.py -- User management REST endpoints (admin only).

Routes (mounted under /api/v1/users, after the auth router so /me and the
password routes win over /{user_id}):
  GET    /            -- list identities
  GET    /{user_id}   -- one identity
  PATCH  /{user_id}   -- update name / email / role / is_active
  DELETE /{user_id}   -- delete identity

Every route depends on require_roles("admin"): the access gate runs first,
then the role authorizer.

[M4] PATCH blocks self-demotion and self-deactivation, DELETE blocks
self-deletion -- an admin cannot lock themselves out.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import UserPatch, UserResponse
from auth.dependencies import require_roles
from auth.models import RequestContext
from auth.store import UserStore
from core.errors import NotFoundError, ValidationError

router = APIRouter()

_admin_only = require_roles("admin")


def _get_or_404(store: UserStore, user_id: int):
    identity = store.find_by_id(user_id)
    if identity is None:
        raise NotFoundError("No user found with that ID.")
    return identity


@router.get("/", response_model=list[UserResponse])
def list_users(request: Request, ctx: RequestContext = Depends(_admin_only)) -> list[UserResponse]:
    store: UserStore = request.app.state.user_store
    return [UserResponse.from_identity(i) for i in store.list_identities()]


@router.get("/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, ctx: RequestContext = Depends(_admin_only)) -> UserResponse:
    store: UserStore = request.app.state.user_store
    return UserResponse.from_identity(_get_or_404(store, user_id))


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    ctx: RequestContext = Depends(_admin_only),
) -> UserResponse:
    """Update profile fields. The store re-validates the whole record on save."""
    store: UserStore = request.app.state.user_store

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No fields to update.")
    if user_id == ctx.identity.id:
        # [M4]
        if updates.get("is_active") is False:
            raise ValidationError("You cannot deactivate your own account.")
        if "role" in updates and updates["role"] != "admin":
            raise ValidationError("You cannot remove your own admin role.")

    updated = store.update_fields(user_id, **updates)
    if updated is None:
        raise NotFoundError("No user found with that ID.")
    return UserResponse.from_identity(updated)


@router.delete("/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, ctx: RequestContext = Depends(_admin_only)) -> Response:
    store: UserStore = request.app.state.user_store
    if user_id == ctx.identity.id:
        raise ValidationError("You cannot delete your own account.")
    if not store.delete(user_id):
        raise NotFoundError("No user found with that ID.")
    return Response(status_code=204)
