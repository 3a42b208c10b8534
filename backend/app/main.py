from __future__ import annotations

import asyncio

from fastapi import Depends, FastAPI
from loguru import logger

from . import schemas
from .core.config import settings
from .db import init_db
from .services.metrics_service import MetricsService
from pipelines.scheduler import CycleScheduler

app = FastAPI(title="Clear Metrics API", version="0.1.0", debug=settings.debug)

_service: MetricsService | None = None
_scheduler: CycleScheduler | None = None
_scheduler_task: asyncio.Task | None = None


def _metrics_service() -> MetricsService:
    """Provide the process-wide metrics service, creating it on first use."""

    global _service
    if _service is None:
        _service = MetricsService.from_settings(settings)
    return _service


@app.on_event("startup")
async def on_startup() -> None:
    """Initialize storage and start the refresh loop when the API boots."""

    global _scheduler, _scheduler_task
    init_db()
    if not settings.background_refresh:
        return
    service = _metrics_service()
    _scheduler = CycleScheduler(
        service.run_cycle,
        interval_seconds=settings.refresh_interval_seconds,
        is_busy=lambda: service.in_flight,
    )
    _scheduler_task = asyncio.create_task(_scheduler.run_forever())


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if _scheduler is not None:
        _scheduler.stop()
    if _scheduler_task is not None:
        await asyncio.gather(_scheduler_task, return_exceptions=True)
    if _service is not None:
        await _service.aclose()
    logger.info("Metrics API shut down")


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/metrics", response_model=schemas.DashboardMetricsResponse, tags=["metrics"])
def get_metrics(service: MetricsService = Depends(_metrics_service)):
    state = service.state
    return schemas.DashboardMetricsResponse(
        stale=state.stale, updated_at=state.updated_at, metrics=state.metrics
    )


@app.get("/routes", response_model=schemas.DashboardRoutesResponse, tags=["routes"])
def get_routes(service: MetricsService = Depends(_metrics_service)):
    state = service.state
    return schemas.DashboardRoutesResponse(
        stale=state.stale, updated_at=state.updated_at, routes=state.routes
    )


@app.post("/refresh", response_model=schemas.RefreshResponse, tags=["metrics"])
async def refresh(service: MetricsService = Depends(_metrics_service)):
    """Run a cycle now unless one is already in flight."""

    if service.in_flight:
        return schemas.RefreshResponse(
            ran=False,
            stale=service.state.stale,
            updated_at=service.state.updated_at,
            detail="A cycle is already running",
        )
    result = await service.run_cycle()
    return schemas.RefreshResponse(
        ran=result is not None,
        stale=service.state.stale,
        updated_at=service.state.updated_at,
        detail=service.state.last_error,
    )
