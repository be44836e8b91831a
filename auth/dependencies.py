"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

The session cookie (Starlette SessionMiddleware) carries the user ID. The
first dependency that needs the caller resolves it through the user store and
caches a Principal on request.state.principal; later dependencies in the same
request read that cached value. Anything upstream (a test harness, another
auth scheme) may populate request.state.principal itself and the session is
then never consulted.

try_get_principal() is the soft variant (returns None).
get_current_principal() raises HTTP 401 if unauthenticated.
require_admin() raises HTTP 403 for callers without administrative override.
require_entitlement() builds a dependency gating a route on one entitlement.

Layer rule: may import from fastapi/starlette (this module is part of the
dependency injection system) but not from api/.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request
from starlette.concurrency import run_in_threadpool

from auth.models import Principal, Role, UserProfile, has_administrative_override

if TYPE_CHECKING:
    from auth.store import UserStore

ProfileLookup = Callable[[str], Awaitable[UserProfile | None]]

SESSION_USER_ID = "user_id"
SESSION_USER_ROLE = "user_role"


def try_get_principal(request: Request) -> Principal | None:
    """Return the authenticated Principal for this request, or None.

    Never raises for a missing or stale session -- a session whose user no
    longer exists is treated as unauthenticated.
    """
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return principal

    user_id = request.session.get(SESSION_USER_ID) if "session" in request.scope else None
    if not user_id:
        return None

    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        return None

    principal = Principal(id=user.id, role=Role.parse(user.role))
    request.state.principal = principal
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(status_code=401, detail="Unauthenticated")
    return principal


def require_admin(request: Request) -> Principal:
    """Require an administrative role. Raises HTTP 401 if unauthenticated, 403 otherwise."""
    principal = get_current_principal(request)
    if not has_administrative_override(principal.role):
        raise HTTPException(status_code=403, detail="Forbidden")
    return principal


def require_entitlement(
    entitlement: str,
    denied_message: str | None = None,
    missing_message: str | None = None,
) -> Callable[[Request], Awaitable[Principal]]:
    """Build a dependency that admits only callers holding the entitlement.

    Flow:
      no principal                          -> 401 "Unauthenticated"
      admin / super_admin                   -> admitted, no lookup
      profile lookup returns None           -> 403 missing_message
      entitlement absent from the profile   -> 403 denied_message
      otherwise                             -> admitted

    Default messages are generic so the entitlement name is not disclosed
    unless the caller passes a message that names it. Exceptions raised by the
    lookup propagate to the application's error handlers; they are never
    turned into a 403.

    Use as a FastAPI dependency:
        @router.get("/reports/export", dependencies=[Depends(require_entitlement("reports.export"))])
    """
    denied = denied_message if denied_message is not None else "Forbidden"
    missing = missing_message if missing_message is not None else "Entitlements not available"

    async def dependency(request: Request) -> Principal:
        principal = getattr(request.state, "principal", None)
        if principal is None:
            # Session resolution hits the store; keep it off the event loop.
            principal = await run_in_threadpool(try_get_principal, request)
        if principal is None:
            raise HTTPException(status_code=401, detail="Unauthenticated")

        if has_administrative_override(principal.role):
            return principal

        lookup: ProfileLookup = request.app.state.profile_lookup
        profile = await lookup(principal.id)
        if profile is None:
            raise HTTPException(status_code=403, detail=missing)
        if entitlement not in profile.entitlements:
            raise HTTPException(status_code=403, detail=denied)
        return principal

    return dependency


def store_profile_lookup(store: UserStore) -> ProfileLookup:
    """Adapt the synchronous UserStore into the async ProfileLookup contract."""

    async def lookup(user_id: str) -> UserProfile | None:
        return await run_in_threadpool(store.get_user_profile, user_id)

    return lookup
