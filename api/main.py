"""
api/main.py -- FastAPI application factory for LeadExchange.

Run with:  uvicorn asgi:app --reload

create_app() builds a fully isolated application: its own settings, user
store, rate-limit counters and profile lookup. asgi.py holds the single
process-wide instance; tests build one per fixture.

Middleware stack (outermost to innermost):
  1. log_requests            -- one bounded log line per /api request
  2. CORSMiddleware          -- CORS headers for allowed browser origins
  3. SessionMiddleware       -- signed-cookie session (user_id, user_role)
  4. parse_json_body         -- parses JSON bodies once, except for the billing webhook
  5. AuthRateLimitMiddleware -- brute-force limits on login/register

Starlette makes the most recently registered middleware the outermost, so
the registrations below run from innermost to outermost.

Lifespan wires the user store and profile lookup into app.state on startup
and closes the store on shutdown when the factory created it.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import (
    AuthRateLimitMiddleware,
    Clock,
    LoginRateLimit,
    RegisterRateLimit,
    create_login_rate_limit,
    create_register_rate_limit,
    monotonic_ms,
)
from api.routes.auth import router as auth_router
from api.routes.health import router as health_router
from api.routes.reports import router as reports_router
from api.routes.users import router as users_router
from auth.dependencies import ProfileLookup, store_profile_lookup
from auth.store import UserStore
from core.config import Settings, get_settings
from core.routing import build_api_log_line, is_json_content_type, should_skip_body_parsers

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("leadexchange.api")

_JSON_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _original_url(request: Request) -> str:
    """Path plus query string, as the client sent it."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def create_app(
    settings: Settings | None = None,
    *,
    user_store: UserStore | None = None,
    login_rate_limit: LoginRateLimit | None = None,
    register_rate_limit: RegisterRateLimit | None = None,
    profile_lookup: ProfileLookup | None = None,
    clock: Clock = monotonic_ms,
) -> FastAPI:
    """Build a LeadExchange application.

    Every argument is optional; omitted collaborators are built from settings.
    A user_store passed in is left open on shutdown -- its owner closes it.
    """
    settings = settings or get_settings()
    login_rate_limit = login_rate_limit or create_login_rate_limit(settings, clock=clock)
    register_rate_limit = register_rate_limit or create_register_rate_limit(settings, clock=clock)

    # -----------------------------------------------------------------------
    # Lifespan
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("LeadExchange API starting up")
        store = user_store if user_store is not None else UserStore(settings.database_url)
        app.state.user_store = store
        app.state.profile_lookup = profile_lookup or store_profile_lookup(store)
        logger.info("Auth store initialized (first_run=%s)", not store.has_users())

        yield

        if user_store is None:
            store.close()
        logger.info("LeadExchange API shutdown complete")

    app = FastAPI(
        title="LeadExchange API",
        description="Lead exchange for builders and contractors.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.login_rate_limit = login_rate_limit
    app.state.register_rate_limit = register_rate_limit

    # -----------------------------------------------------------------------
    # Middleware stack (registered innermost first)
    # -----------------------------------------------------------------------

    app.add_middleware(
        AuthRateLimitMiddleware,
        login=login_rate_limit,
        register=register_rate_limit,
        trust_proxy=settings.trust_proxy,
    )

    @app.middleware("http")
    async def parse_json_body(request: Request, call_next):
        """Parse a JSON request body once into request.state.json_body.

        A body is parsed whenever FastAPI would read it as JSON, including a
        missing Content-Type or an application/*+json one, so the rate limiter
        sees the same email the handler does. The billing webhook is skipped
        so its handler receives the raw bytes the signature was computed over. Malformed JSON is rejected with 400
        before any handler or rate limiter sees it.
        """
        if should_skip_body_parsers(_original_url(request)):
            return await call_next(request)
        if request.method in _JSON_METHODS and is_json_content_type(request.headers.get("content-type")):
            raw = await request.body()
            if raw:
                try:
                    request.state.json_body = json.loads(raw)
                except ValueError:
                    return JSONResponse(status_code=400, content={"message": "Invalid JSON body."})
        return await call_next(request)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.secure_cookies,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type"],
        max_age=3600,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log "<METHOD> <path> <status> in <ms>ms" for /api requests.

        Bodies are never logged; the line is capped by build_api_log_line().
        """
        start = time.perf_counter()
        response = await call_next(request)
        path = request.url.path
        if path.startswith("/api"):
            duration_ms = round((time.perf_counter() - start) * 1000)
            logger.info(build_api_log_line(request.method, path, response.status_code, duration_ms))
        return response

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(health_router, prefix="/api")
    app.include_router(auth_router, prefix="/api", tags=["Auth"])
    app.include_router(users_router, prefix="/api", tags=["Users"])
    app.include_router(reports_router, prefix="/api", tags=["Reports"])

    # -----------------------------------------------------------------------
    # Exception handlers
    #
    # Every error body has the shape {"message": ...}, matching the 429
    # responses produced by the rate-limit middleware.
    # -----------------------------------------------------------------------

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 with the validation issues. Input values are not echoed back."""
        issues = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request", "issues": jsonable_encoder(issues)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The traceback goes to the log only; the client receives a generic
        message so internals (SQL, file paths) never leak.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal Server Error"})

    return app
