"""FastAPI application for clubstats: lifespan wiring and ops endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response
from pydantic import BaseModel

from clubstats.config import get_settings
from clubstats.database import AsyncSessionLocal, async_engine, close_db, get_pool_status, init_db
from clubstats.jobs.tracking import get_last_success_at
from clubstats.scheduler import build_scheduler
from clubstats.telemetry import get_metrics_text

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()
logging.getLogger("clubstats").setLevel(settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting clubstats...")
    await init_db()

    app.state.reconciler = None
    if settings.RECONCILE_SCHEDULER_ENABLED:
        reconciler = build_scheduler(settings, AsyncSessionLocal, async_engine)
        reconciler.start()
        app.state.reconciler = reconciler
    else:
        logger.info("[SCHEDULER] Disabled (RECONCILE_SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if app.state.reconciler is not None:
        app.state.reconciler.stop()
    await close_db()


app = FastAPI(
    title="clubstats",
    description="Club, review and performance aggregates with nightly reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)


class JobHealth(BaseModel):
    name: str
    last_success_at: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool
    jobs: list[JobHealth]
    database: dict


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint with last successful reconciliation per job."""
    reconciler = getattr(request.app.state, "reconciler", None)
    jobs = []
    if reconciler is not None:
        async with AsyncSessionLocal() as session:
            for name in reconciler.job_names:
                last_success = await get_last_success_at(session, name)
                jobs.append(JobHealth(
                    name=name,
                    last_success_at=last_success.isoformat() if last_success else None,
                ))

    return HealthResponse(
        status="ok",
        scheduler_running=bool(reconciler and reconciler.running),
        jobs=jobs,
        database=get_pool_status(),
    )


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus exposition of reconciliation job metrics."""
    content, content_type = get_metrics_text()
    return Response(content=content, media_type=content_type)
