"""
auth/passwords.py -- Password hashing and credential verification.

Security design decisions:
  Passwords: PBKDF2-HMAC-SHA256 via hashlib, 310,000 iterations, 16-byte salt
       from the OS CSPRNG, 32-byte derived key. Hash and salt are stored as
       base64 text together with the iteration count, so the count can be raised
       later without invalidating existing hashes.

  Comparison: hmac.compare_digest over the raw derived bytes. Its running time
       does not depend on where the first mismatching byte sits. A length
       mismatch returns False before comparing; the length of a digest is not
       secret.

  Timing equalization: authenticate_user() always runs one key derivation,
       against _DUMMY_HASH when the email is unknown, so response time does not
       reveal whether an account exists.

  Callers should run these functions off the event loop (sync route handlers
  run in FastAPI's threadpool) because each derivation is CPU-bound.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING

from auth.models import PasswordHash

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("leadexchange.auth")

PBKDF2_ITERATIONS = 310_000
SALT_BYTES = 16
KEY_BYTES = 32
_DIGEST = "sha256"


def _derive(password: str, salt: str, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(_DIGEST, password.encode("utf-8"), salt.encode("utf-8"), iterations, dklen=KEY_BYTES)


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> PasswordHash:
    """Derive a fresh salted hash for the given plaintext password."""
    salt = base64.b64encode(secrets.token_bytes(SALT_BYTES)).decode("ascii")
    derived = _derive(password, salt, iterations)
    return PasswordHash(
        hash=base64.b64encode(derived).decode("ascii"),
        salt=salt,
        iterations=iterations,
    )


def verify_password(password: str, stored: PasswordHash) -> bool:
    """Return True if the password matches the stored hash.

    Never raises for a wrong password. A stored hash that is not valid base64
    verifies as False rather than erroring.
    """
    derived = _derive(password, stored.salt, stored.iterations)
    try:
        expected = base64.b64decode(stored.hash, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Stored password hash is not valid base64")
        return False
    if len(expected) != len(derived):
        return False
    return hmac.compare_digest(derived, expected)


# Computed once at module load so the first failed login is not measurably
# faster than later ones.
_DUMMY_HASH: PasswordHash = hash_password("leadexchange_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Unknown email: the derivation runs against _DUMMY_HASH (same cost).
    Wrong password: the derivation runs against the real hash (same cost).

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        # Do NOT return before deriving a key.
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password):
        return None
    return user
