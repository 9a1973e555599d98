"""IncidentDesk: FastAPI application entry point."""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from sqlalchemy import text

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from incidentdesk.config import settings
from incidentdesk.database import engine, init_db
from incidentdesk.logging_config import setup_logging

from incidentdesk.api.incidents import router as incidents_router
from incidentdesk.api.unread import router as unread_router
from incidentdesk.workers.scheduler import scheduler
from incidentdesk.observability.metrics import metrics

logger = logging.getLogger("incidentdesk")

# Rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])


def _startup_checks() -> None:
    """Log warnings for misconfigured or missing settings."""
    if settings.is_production and not settings.cors_origins_list:
        logger.warning("APP_ENV=production but CORS_ORIGINS is empty")
    if "sqlite" in settings.database_url:
        logger.info("Using SQLite: row locks are not enforced; use PostgreSQL in production")

    channels = []
    if settings.resend_api_key:
        channels.append("Resend email")
    if settings.sms_webhook_url:
        channels.append("SMS webhook")
    if channels:
        logger.info(f"Escalation channels: {', '.join(channels)}")
    else:
        logger.warning("No escalation channels configured; attempts will be recorded but not delivered")

    if not settings.redis_url:
        logger.info("Unread cache is process-local (REDIS_URL not set)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    setup_logging(settings.log_level)
    _startup_checks()

    await init_db()
    logger.info("IncidentDesk API started")
    logger.info(f"  Escalation poll interval: {settings.escalation_poll_interval_seconds}s")

    await scheduler.start()

    yield

    await scheduler.stop()
    logger.info("IncidentDesk API shutting down")


app = FastAPI(
    title="IncidentDesk",
    description="Incident lifecycle and on-call escalation API",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request tracing + access log middleware
@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    start = time.perf_counter()

    response: Response = await call_next(request)

    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    metrics.observe_request(response.status_code, duration_ms)
    logger.info(
        "request completed",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


# Routers
app.include_router(incidents_router)
app.include_router(unread_router)


async def _db_ready() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("database readiness check failed")
        return False


@app.get("/api/health")
async def health_check():
    database_ready = await _db_ready()
    return {
        "status": "healthy" if database_ready else "degraded",
        "service": "incidentdesk",
        "scheduler_active": scheduler.running,
        "database_ready": database_ready,
    }


@app.get("/api/health/live")
async def liveness_check():
    return {"status": "alive", "service": "incidentdesk"}


@app.get("/api/health/ready")
async def readiness_check(response: Response):
    database_ready = await _db_ready()
    ready = database_ready and scheduler.running

    if not ready:
        response.status_code = 503

    return {
        "status": "ready" if ready else "not_ready",
        "checks": {
            "database": database_ready,
            "scheduler": scheduler.running,
        },
    }


@app.get("/api/metrics")
async def get_metrics():
    return {"service": "incidentdesk", "metrics": metrics.snapshot()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("incidentdesk.main:app", host=settings.host, port=settings.port, reload=not settings.is_production)
