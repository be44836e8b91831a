"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LeadExchange happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, login_failure_limit -> LOGIN_FAILURE_LIMIT).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a session key with a warning; production mode
      refuses to start without one.

Security notes:
  SECRET_KEY signs the session cookie. Shorter than 32 chars is rejected.
  Outside DEBUG a missing SECRET_KEY is a hard startup failure, otherwise
  every restart would silently log all users out.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("leadexchange.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'leadexchange_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost", "http://localhost:5000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "leadexchange.sid"
    session_max_age_seconds: int = Field(default=24 * 60 * 60, gt=0)

    # One reverse proxy in front of the app: the client address is the last
    # X-Forwarded-For hop. Disable when the app is exposed directly.
    trust_proxy: bool = True

    # ------------------------------------------------------------------
    # Auth rate limiting
    # ------------------------------------------------------------------

    login_attempt_limit: int = Field(default=30, gt=0)
    login_failure_limit: int = Field(default=5, gt=0)
    login_window_seconds: int = Field(default=15 * 60, gt=0)
    register_attempt_limit: int = Field(default=12, gt=0)
    register_window_seconds: int = Field(default=60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    health_db_timeout_ms: int = Field(default=750, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or pass a Settings instance
    straight to api.main.create_app().
    """
    return Settings()
