"""
auth/models.py -- Domain dataclasses for authentication and entitlement entities.

Pattern: Data class (pure data container). Dataclasses own the domain shape;
stores, dependencies and routes do the work. The only behaviour here is the
Role parsing and the administrative-override predicate, which must live next
to the enum so no caller ever compares raw role strings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Unknown strings never map to a member."""

    SALES = "sales"
    BUILDER = "builder"
    ADMIN = "admin"
    DUAL = "dual"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: str | None) -> Role | None:
        """Map a stored role string onto the enum; None for missing or unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


_ADMINISTRATIVE_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def has_administrative_override(role: Role | None) -> bool:
    """Return True if the role bypasses entitlement checks."""
    return role in _ADMINISTRATIVE_ROLES


@dataclass(frozen=True)
class PasswordHash:
    """A salted PBKDF2-SHA256 password hash. Immutable once derived.

    hash and salt are base64 text. A new salt is generated for every hash,
    so two hashes of the same password never share salt or digest.
    """

    hash: str
    salt: str
    iterations: int


@dataclass(frozen=True)
class Principal:
    """The authenticated caller attached to a request by session resolution."""

    id: str
    role: Role | None


@dataclass
class User:
    """A LeadExchange account.

    email is stored lowercased; lookups are case-insensitive.
    plan_id selects the default entitlement set when the user has no
    explicit entitlement override row.
    """

    email: str
    role: str  # "sales", "builder", "admin", "dual", "super_admin"
    password: PasswordHash
    id: str | None = None
    plan_id: str = "free"
    created_at: str | None = None


@dataclass
class UserProfile:
    """Read-only view consumed by entitlement checks."""

    user_id: str
    plan_id: str
    entitlements: list[str] = field(default_factory=list)
