"""
api/routes/health.py -- Liveness endpoint with a time-bounded database probe.

The probe races a trivial query against a timer. A probe that exceeds its
budget is reported as an error, never awaited indefinitely, so a hung
database cannot make the health check hang with it. No auth and no rate
limit -- load balancers must always reach it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import DatabaseProbe, HealthResponse
from auth.store import UserStore

logger = logging.getLogger("leadexchange.api.health")

DEFAULT_DB_TIMEOUT_MS = 750

router = APIRouter()


async def probe_database(store: UserStore, timeout_ms: int = DEFAULT_DB_TIMEOUT_MS) -> DatabaseProbe:
    """Run store.ping() within timeout_ms and report the outcome."""
    started = time.perf_counter()
    try:
        # A timed-out ping is abandoned in its worker thread, not awaited.
        await asyncio.wait_for(asyncio.to_thread(store.ping), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        return DatabaseProbe(status="error", message="health-db-timeout")
    except Exception as exc:  # any driver error means "not healthy"
        # Driver messages can carry the connection URL or file paths; they go
        # to the log only.
        logger.warning("Health database probe failed: %s", exc)
        return DatabaseProbe(status="error", message=type(exc).__name__)
    return DatabaseProbe(status="ok", latency_ms=round((time.perf_counter() - started) * 1000))


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return 200 "live" when the database answers in time, 503 "degraded" otherwise."""
    probe = await probe_database(request.app.state.user_store, request.app.state.settings.health_db_timeout_ms)
    healthy = probe.status == "ok"
    payload = HealthResponse(
        status="live" if healthy else "degraded",
        db=probe,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=payload.model_dump(exclude_none=True))
