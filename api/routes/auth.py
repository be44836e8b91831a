"""
api/routes/auth.py -- Session authentication endpoints.

Routes:
  POST /api/auth/register  -- create an account and start a session (201)
  POST /api/auth/login     -- password login; starts a fresh session (200 / 401)
  POST /api/auth/logout    -- end the session (204)
  GET  /api/auth/me        -- current user and effective entitlements (requires auth)

Security:
  Brute-force limits for register and login are applied by
  api.limiter.AuthRateLimitMiddleware before these handlers run; login's
  200/401 status is what drives the failure counter.
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Wrong email and wrong password produce the same 401 body.
  Cache-Control: no-store on login responses.
  register/login are sync handlers so the PBKDF2 derivation runs in the
  threadpool rather than on the event loop.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    PublicUser,
    RegisterRequest,
    RegistrationRoleEnum,
    UserEnvelope,
)
from auth.dependencies import SESSION_USER_ID, SESSION_USER_ROLE, get_current_principal
from auth.models import Principal, User
from auth.passwords import authenticate_user, hash_password
from auth.store import UserStore

logger = logging.getLogger("leadexchange.api.auth")

# Auth policy:
# - POST /api/auth/register: public (rate limited)
# - POST /api/auth/login:    public (rate limited)
# - POST /api/auth/logout:   public -- clearing a session needs no prior auth
# - GET  /api/auth/me:       requires auth (get_current_principal)
router = APIRouter()


def _start_session(request: Request, user: User) -> None:
    """Replace whatever the session held with the newly authenticated user."""
    request.session.clear()
    request.session[SESSION_USER_ID] = user.id
    request.session[SESSION_USER_ROLE] = user.role


@router.post(
    "/auth/register",
    response_model=UserEnvelope,
    status_code=201,
    responses={403: {"model": MessageResponse}, 409: {"model": MessageResponse}, 429: {"model": MessageResponse}},
)
def register(request: Request, body: RegisterRequest) -> UserEnvelope:
    """Create an account and log it in.

    admin is accepted only while no account exists (first-run bootstrap);
    afterwards administrators are promoted by existing admins, never self-made.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(status_code=409, detail="An account with this email already exists.")

    if body.role is RegistrationRoleEnum.admin and user_store.has_users():
        raise HTTPException(status_code=403, detail="Forbidden")

    new_user = User(email=body.email, role=body.role.value, password=hash_password(body.password))
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="An account with this email already exists.") from exc

    created = user_store.get_by_id(user_id)
    if created is None:
        raise HTTPException(status_code=500, detail="Unable to build user profile")

    _start_session(request, created)
    logger.info("Registered user %s with role %s", created.id, created.role)
    return UserEnvelope(user=PublicUser.from_user(created))


@router.post(
    "/auth/login",
    response_model=UserEnvelope,
    responses={401: {"model": MessageResponse}, 429: {"model": MessageResponse}},
)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and start a session."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(status_code=401, content={"message": "Invalid email or password."})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    _start_session(request, user)
    resp = JSONResponse(status_code=200, content=UserEnvelope(user=PublicUser.from_user(user)).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", status_code=204)
async def logout(request: Request) -> Response:
    """Clear the session. The session middleware expires the cookie."""
    request.session.clear()
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the current user with their effective entitlements."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthenticated")
    profile = user_store.get_user_profile(principal.id)
    return MeResponse(
        user=PublicUser.from_user(user),
        entitlements=profile.entitlements if profile is not None else [],
    )
