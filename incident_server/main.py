"""
File: main.py
Purpose: Application entrypoint for the incident server. Wires routers, logging,
         telemetry, persistence and the optional sync scheduler.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Request
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from .config import Settings, settings
from .db import close_db_pool, ensure_schema, init_db_pool
from .instrumentation import LATENCY, REQUESTS, setup_metrics
from .logging_setup import configure_logging
from .routers import health, metrics, rpc, sync
from .sync import SyncPipeline
from .wiring import Services, build_services

log = logging.getLogger("incident-server")


def setup_scheduler(pipeline: SyncPipeline, cron: str) -> Optional[AsyncIOScheduler]:
    """Run the sync pipeline on a cron schedule (minute hour day month day_of_week)."""
    try:
        trigger = CronTrigger.from_crontab(cron)
    except ValueError as e:
        log.warning(f"Invalid cron expression {cron!r}: {e}")
        return None

    async def scheduled_sync():
        log.info("Scheduled sync started")
        try:
            result = await pipeline.run()
            log.info(f"Scheduled sync complete: {result.to_dict()}")
        except Exception as e:
            log.error(f"Scheduled sync failed: {e}")

    scheduler = AsyncIOScheduler()
    scheduler.add_job(scheduled_sync, trigger, id="corpus-sync", max_instances=1, coalesce=True)
    scheduler.start()
    log.info(f"Scheduler started with cron: {cron}")
    return scheduler


def create_app(services: Optional[Services] = None, cfg: Settings = settings) -> FastAPI:
    """Build the FastAPI app; pass ``services`` to run against prebuilt components."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage app startup/shutdown lifecycle."""
        configure_logging(cfg.LOG_LEVEL)
        setup_metrics(app)
        owned = services is None
        use_pg = owned and cfg.STORE_BACKEND == "postgres"
        if use_pg:
            await init_db_pool()
            await ensure_schema()
        svc = services or build_services(cfg)
        app.state.services = svc

        scheduler = None
        if cfg.SYNC_TRIGGER == "schedule":
            scheduler = setup_scheduler(svc.pipeline, cfg.SYNC_CRON)
        log.info(f"{cfg.SERVICE_NAME} started (store={cfg.STORE_BACKEND}, sync={cfg.SYNC_TRIGGER})")
        yield

        if scheduler is not None:
            scheduler.shutdown(wait=False)
        if owned:
            await svc.aclose()
        if use_pg:
            await close_db_pool()
        log.info(f"{cfg.SERVICE_NAME} stopped")

    app = FastAPI(
        title="Incident Server",
        version=cfg.SERVICE_VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def prometheus_mw(request: Request, call_next):
        """Track request metrics and latency histograms."""
        route = request.url.path
        with LATENCY.labels(route=route, method=request.method).time():
            resp = await call_next(request)
        REQUESTS.labels(route=route, method=request.method, status=str(resp.status_code)).inc()
        return resp

    app.include_router(health.router, prefix="", tags=["system"])
    app.include_router(metrics.router, prefix="", tags=["system"])
    app.include_router(rpc.router, prefix="", tags=["rpc"])
    app.include_router(sync.router, prefix="/v1", tags=["sync"])

    FastAPIInstrumentor.instrument_app(app)
    return app


app = create_app()
