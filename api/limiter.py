"""
api/limiter.py -- Brute-force protection for the login and register endpoints.

Two policies, both built from auth.ratelimit.SlidingWindowRateLimiter:

  LoginRateLimit
    attempts  -- every login attempt is consumed (default 30 / 15 min).
    failures  -- only 401 responses are counted (default 5 / 15 min); a 200
                 clears the count. Checked read-only before the attempt runs.

  RegisterRateLimit
    attempts  -- every registration attempt is consumed (default 12 / hour).

Each request is keyed by "ip:<client ip>" and, when the JSON body carries a
string email, by "email:<trimmed lowercased email>". Every identifier is
checked independently and the longest Retry-After among the tripped ones is
returned. The attempt limiter is evaluated before the failure limiter; if it
trips, its Retry-After is the one reported.

The 429 body is always the same generic message. It never says which
identifier or which limiter tripped, and it is identical whether or not the
account exists.

State is process-local and in memory by default (see the store_factory
argument of the factories). Losing it on restart only means limits start
over.

Pattern: factory functions build configured policy objects so every app built
by api.main.create_app() -- including each test app -- gets isolated counters.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from auth.ratelimit import InMemoryRateLimitStore, RateLimitStore, SlidingWindowRateLimiter
from core.config import Settings

logger = logging.getLogger("leadexchange.api.limiter")

GENERIC_MESSAGE = "Too many attempts. Please try again later."
RETRY_AFTER_HEADER = "Retry-After"

LOGIN_PATH = "/api/auth/login"
REGISTER_PATH = "/api/auth/register"

Clock = Callable[[], int]
StoreFactory = Callable[[], RateLimitStore]


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def client_ip(request: Request, trust_proxy: bool) -> str | None:
    """Return the client address used as a rate-limit identifier.

    With trust_proxy, the app sits behind exactly one reverse proxy: the proxy
    appends the real peer address as the last X-Forwarded-For hop, and any
    earlier hops are client-supplied and untrusted. Repeated header lines are
    joined in order first, since a proxy may add its own line after the
    client's rather than appending to it.
    """
    if trust_proxy:
        forwarded = ",".join(request.headers.getlist("X-Forwarded-For"))
        if forwarded:
            hop = forwarded.split(",")[-1].strip()
            if hop:
                return hop
    if request.client:
        return request.client.host
    return None


def build_identifiers(ip: str | None, body: object) -> list[str]:
    """Return the distinct rate-limit keys for a request, IP first."""
    identifiers: list[str] = []
    if ip:
        identifiers.append(f"ip:{ip}")
    email = body.get("email") if isinstance(body, dict) else None
    if isinstance(email, str):
        email = email.strip().lower()
        if email:
            identifiers.append(f"email:{email}")
    return list(dict.fromkeys(identifiers))


def _worst_retry_after(results) -> int:
    """Longest retry_after_ms among disallowed results, 0 when all were allowed."""
    return max((r.retry_after_ms for r in results if not r.allowed), default=0)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class LoginRateLimit:
    """Attempt ceiling plus consecutive-failure ceiling for the login endpoint."""

    def __init__(
        self,
        attempts: SlidingWindowRateLimiter,
        failures: SlidingWindowRateLimiter,
        clock: Clock = monotonic_ms,
    ) -> None:
        self.attempts = attempts
        self.failures = failures
        self.clock = clock

    def check(self, identifiers: list[str]) -> int:
        """Count this attempt. Return 0 to proceed, or the retry-after in milliseconds."""
        now = self.clock()
        # Consume on every identifier even after one trips, so each key's
        # count reflects every attempt made with it.
        retry_after_ms = _worst_retry_after([self.attempts.consume(key, now) for key in identifiers])
        if retry_after_ms > 0:
            return retry_after_ms
        return _worst_retry_after([self.failures.is_limited(key, now) for key in identifiers])

    def record_outcome(self, identifiers: list[str], status_code: int) -> None:
        """Clear failures on 200, count one failure on 401, ignore anything else."""
        if status_code == 200:
            for key in identifiers:
                self.failures.reset(key)
        elif status_code == 401:
            now = self.clock()
            for key in identifiers:
                self.failures.increment(key, now)

    def reset_all(self) -> None:
        self.attempts.reset_all()
        self.failures.reset_all()


class RegisterRateLimit:
    """Single attempt ceiling for the register endpoint."""

    def __init__(self, attempts: SlidingWindowRateLimiter, clock: Clock = monotonic_ms) -> None:
        self.attempts = attempts
        self.clock = clock

    def check(self, identifiers: list[str]) -> int:
        now = self.clock()
        return _worst_retry_after([self.attempts.consume(key, now) for key in identifiers])

    def reset_all(self) -> None:
        self.attempts.reset_all()


def create_login_rate_limit(
    settings: Settings,
    store_factory: StoreFactory = InMemoryRateLimitStore,
    clock: Clock = monotonic_ms,
) -> LoginRateLimit:
    window_ms = settings.login_window_seconds * 1000
    return LoginRateLimit(
        attempts=SlidingWindowRateLimiter(window_ms, settings.login_attempt_limit, store_factory()),
        failures=SlidingWindowRateLimiter(window_ms, settings.login_failure_limit, store_factory()),
        clock=clock,
    )


def create_register_rate_limit(
    settings: Settings,
    store_factory: StoreFactory = InMemoryRateLimitStore,
    clock: Clock = monotonic_ms,
) -> RegisterRateLimit:
    return RegisterRateLimit(
        attempts=SlidingWindowRateLimiter(
            settings.register_window_seconds * 1000, settings.register_attempt_limit, store_factory()
        ),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def rate_limited_response(retry_after_ms: int) -> JSONResponse:
    """Generic 429 with Retry-After in whole seconds (rounded up, at least 1)."""
    retry_after_seconds = max(1, math.ceil(retry_after_ms / 1000))
    return JSONResponse(
        status_code=429,
        content={"message": GENERIC_MESSAGE},
        headers={RETRY_AFTER_HEADER: str(retry_after_seconds)},
    )


class AuthRateLimitMiddleware(BaseHTTPMiddleware):
    """Apply LoginRateLimit / RegisterRateLimit to POSTs on the auth endpoints.

    Reads the email from request.state.json_body, which the JSON body-parsing
    middleware fills in -- register this middleware so it runs after that one.
    """

    def __init__(
        self,
        app: ASGIApp,
        login: LoginRateLimit,
        register: RegisterRateLimit,
        trust_proxy: bool = True,
    ) -> None:
        super().__init__(app)
        self.login = login
        self.register = register
        self.trust_proxy = trust_proxy

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method != "POST" or request.url.path not in (LOGIN_PATH, REGISTER_PATH):
            return await call_next(request)

        identifiers = build_identifiers(
            client_ip(request, self.trust_proxy),
            getattr(request.state, "json_body", None),
        )

        if request.url.path == REGISTER_PATH:
            retry_after_ms = self.register.check(identifiers)
            if retry_after_ms > 0:
                logger.warning("Rate limited %s", request.url.path)
                return rate_limited_response(retry_after_ms)
            return await call_next(request)

        retry_after_ms = self.login.check(identifiers)
        if retry_after_ms > 0:
            logger.warning("Rate limited %s", request.url.path)
            return rate_limited_response(retry_after_ms)

        response = await call_next(request)
        self.login.record_outcome(identifiers, response.status_code)
        return response
