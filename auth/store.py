"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and entitlements.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are stored lowercased so the UNIQUE constraint is case-insensitive
  and get_by_email() matches regardless of how the user typed it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.models import PasswordHash, User, UserProfile
from auth.plans import DEFAULT_PLAN_ID, plan_entitlements

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("role", String(30), nullable=False),
    Column("plan_id", String(30), nullable=False, server_default=DEFAULT_PLAN_ID),
    Column("password_hash", Text, nullable=False),
    Column("password_salt", Text, nullable=False),
    Column("password_iterations", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

# One optional override row per user. When present, features replaces the
# plan's default entitlement set entirely.
_user_entitlements = Table(
    "user_entitlements",
    _metadata,
    Column("user_id", String(64), primary_key=True),
    Column("features", JSON, nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their entitlement overrides.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@example.com", role="builder", password=hash_password("pw")))
        profile = store.get_user_profile(user_id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one account exists (first-run detection)."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a conflict, which also covers two concurrent
        registrations racing past an existence check.
        """
        user_id = user.id or f"user_{uuid.uuid4()}"
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=_normalize_email(user.email),
                    role=user.role,
                    plan_id=user.plan_id,
                    password_hash=user.password.hash,
                    password_salt=user.password.salt,
                    password_iterations=user.password.iterations,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case and surrounding whitespace."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def set_entitlements(self, user_id: str, features: list[str]) -> None:
        """Replace the user's entitlement override with features (deduplicated, order kept)."""
        unique = list(dict.fromkeys(features))
        with self.engine.connect() as conn:
            conn.execute(_user_entitlements.delete().where(_user_entitlements.c.user_id == user_id))
            conn.execute(_user_entitlements.insert().values(user_id=user_id, features=unique, updated_at=_now_iso()))
            conn.commit()

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        """Return the user's effective entitlements.

        None when the user does not exist or is on a plan this build does not
        know. The override row wins over the plan defaults.
        """
        with self.engine.connect() as conn:
            user_row = conn.execute(select(_users.c.id, _users.c.plan_id).where(_users.c.id == user_id)).fetchone()
            if user_row is None:
                return None
            override = conn.execute(
                select(_user_entitlements.c.features).where(_user_entitlements.c.user_id == user_id)
            ).scalar()

        defaults = plan_entitlements(user_row.plan_id)
        if defaults is None:
            return None
        entitlements = list(override) if override is not None else defaults
        return UserProfile(user_id=user_row.id, plan_id=user_row.plan_id, entitlements=entitlements)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> None:
        """Run a trivial query. Raises on any database failure."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=row.role,
        plan_id=row.plan_id,
        password=PasswordHash(
            hash=row.password_hash,
            salt=row.password_salt,
            iterations=row.password_iterations,
        ),
        created_at=row.created_at,
    )
