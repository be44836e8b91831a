"""
api/routes/users.py -- Account administration.

Routes:
  GET /api/users                          -- list accounts (admin only)
  PUT /api/users/{user_id}/entitlements   -- replace a user's entitlement override (admin only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import EntitlementsResponse, EntitlementsUpdate, PublicUser
from auth.dependencies import require_admin
from auth.store import UserStore

# Auth policy:
# - every route requires admin or super_admin (router-level require_admin)
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/users", response_model=list[PublicUser])
def list_users(request: Request) -> list[PublicUser]:
    user_store: UserStore = request.app.state.user_store
    return [PublicUser.from_user(u) for u in user_store.list_users()]


@router.put("/users/{user_id}/entitlements", response_model=EntitlementsResponse)
def replace_entitlements(request: Request, user_id: str, body: EntitlementsUpdate) -> EntitlementsResponse:
    """Replace the entitlement override for user_id.

    The override takes precedence over the user's plan defaults until it is
    replaced again. An empty list revokes every entitlement.
    """
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_id(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found.")

    user_store.set_entitlements(user_id, body.entitlements)
    profile = user_store.get_user_profile(user_id)
    return EntitlementsResponse(
        user_id=user_id,
        entitlements=profile.entitlements if profile is not None else [],
    )
