"""
API request and response models for LeadExchange REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password material (hash, salt, iteration count) exists only on the domain
User; no response model here has a field for it.
"""

from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_Email = Annotated[str, Field(pattern=EMAIL_PATTERN, max_length=320)]
_Entitlement = Annotated[str, Field(min_length=1, max_length=100)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegistrationRoleEnum(str, Enum):
    """Roles a caller may ask for at registration.

    admin is only honoured for the first account; super_admin is never
    self-assignable and is not listed.
    """

    sales = "sales"
    builder = "builder"
    admin = "admin"
    dual = "dual"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=8, max_length=255)
    role: RegistrationRoleEnum


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=1, max_length=255)


class EntitlementsUpdate(BaseModel):
    """Request body for PUT /api/users/{user_id}/entitlements."""

    entitlements: list[_Entitlement] = Field(max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PublicUser(BaseModel):
    """Account fields safe to return to clients."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: str
    plan_id: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id or "",
            email=user.email,
            role=user.role,
            plan_id=user.plan_id,
            created_at=user.created_at or "",
        )


class UserEnvelope(BaseModel):
    """Response for register and login."""

    model_config = ConfigDict(frozen=True)

    user: PublicUser


class MeResponse(BaseModel):
    """Response for GET /api/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: PublicUser
    entitlements: list[str]


class EntitlementsResponse(BaseModel):
    """Response for PUT /api/users/{user_id}/entitlements."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    entitlements: list[str]


class MessageResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    message: str


class DatabaseProbe(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["ok", "error"]
    latency_ms: Optional[int] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: Literal["live", "degraded"]
    db: DatabaseProbe
    timestamp: str
