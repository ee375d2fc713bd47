"""
Cycle KPI - Main Application
============================

Delivery KPI service for groups tracked against six fixed cycles.

Modules:
- Snapshots: committed-set snapshots per (group, cycle) with a freeze policy
- KPI: periodic runs computing committed, completed, delivery % and spillover

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and pure policies
- Infrastructure: Database, tracker client, cache, config files, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from cycle_kpi.config import Settings, get_settings
from cycle_kpi.core import ApplicationException
from cycle_kpi.infrastructure.database import Database
from cycle_kpi.infrastructure.tracker import ITrackerClient, LinearTrackerClient
from cycle_kpi.kpi.application import KpiCalculatorService
from cycle_kpi.kpi.domain import KpiRunOptions
from cycle_kpi.kpi.infrastructure import CachedTrackerGateway, KpiConfigManager, KpiScheduler
from cycle_kpi.kpi.interfaces import kpi_router
from cycle_kpi.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from cycle_kpi.shared.infrastructure.cache import TTLCache
from cycle_kpi.shared.infrastructure.logging import setup_logging, get_logger
from cycle_kpi.snapshots.application import SnapshotService
from cycle_kpi.snapshots.infrastructure import SQLAlchemySnapshotStore
from cycle_kpi.snapshots.interfaces import snapshots_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    tracker_client: Optional[ITrackerClient] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings())
        tracker_client: Upstream client to use instead of the Linear client;
            the caller keeps ownership of it
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Load calendar and group configuration (fatal when missing)
        3. Open database and create tables
        4. Wire cache, tracker gateway, snapshot store and calculator
        5. Start KPI scheduler

        SHUTDOWN:
        1. Stop KPI scheduler
        2. Stop config watcher
        3. Close tracker client and database
        """
        # === STARTUP ===
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting KPI Service", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        config_manager = KpiConfigManager(settings.calendar_path, settings.groups_path)
        config_manager.load()
        if settings.config_watch_enabled:
            config_manager.start_watching()

        database = Database(
            settings.database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        logger.info("Creating database tables")
        await database.create_tables()

        cache = TTLCache(default_ttl=settings.items_cache_ttl_seconds)
        client = tracker_client or LinearTrackerClient.from_settings(settings)
        if settings.tracker_api_key is None and tracker_client is None:
            logger.warning("Tracker API key not configured, upstream calls will be rejected")

        gateway = CachedTrackerGateway(
            client,
            cache,
            items_ttl=settings.items_cache_ttl_seconds,
            labels_ttl=settings.labels_cache_ttl_seconds,
        )
        store = SQLAlchemySnapshotStore(database)
        calculator = KpiCalculatorService(
            gateway,
            SnapshotService(store, threshold_cycle=settings.freeze_policy_cycle),
            config_manager,
            KpiRunOptions.from_settings(settings),
        )

        scheduler = None
        if settings.kpi_evaluation_interval > 0:
            async def kpi_run_job() -> None:
                """Background KPI run."""
                try:
                    await calculator.run()
                except Exception as e:
                    logger.error("Scheduled KPI run failed", extra={"error": str(e)})

            scheduler = KpiScheduler(interval_seconds=settings.kpi_evaluation_interval)
            await scheduler.start(kpi_run_job)

        # Store services in app state for dependency injection
        app.state.database = database
        app.state.config_manager = config_manager
        app.state.cache = cache
        app.state.tracker_client = client
        app.state.snapshot_store = store
        app.state.kpi_calculator = calculator
        app.state.scheduler = scheduler

        logger.info("KPI Service started successfully")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down KPI Service")

        if scheduler:
            await scheduler.stop()

        config_manager.stop_watching()

        if tracker_client is None:
            await client.close()

        await database.close()

        logger.info("KPI Service shutdown complete")

    app = FastAPI(
        title="Cycle KPI API",
        description="""
    ## Delivery KPIs per group and cycle

    Each run fetches the items labelled for every cycle, keeps a committed-set
    snapshot per (group, cycle), freezes it once the policy window closes, and
    reports committed, completed, delivery % and spillover.

    **Freeze policy:** cycles up to `FREEZE_POLICY_CYCLE` (default `C2`) share
    one grace window ending when that cycle ends; later cycles freeze at their
    own end.

    **Spillover:** `0` while a cycle is active, `committed - completed_by_end`
    once it has closed.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = settings

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    # added last runs first: the correlation id is bound before request logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(kpi_router)
    app.include_router(snapshots_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns database connectivity, scheduler state and the tracker
        circuit breaker state.
        """
        state = request.app.state
        checks = {
            "database": "connected",
            "config": "loaded",
            "scheduler": "running" if state.scheduler and state.scheduler.is_running else "stopped",
        }

        try:
            async with state.database.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            checks["database"] = f"error: {e}"

        breaker = getattr(state.tracker_client, "circuit_breaker", None)
        if breaker is not None:
            checks["tracker_circuit"] = breaker.state

        healthy = checks["database"] == "connected"
        return {
            "status": "healthy" if healthy else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Cycle KPI Service",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "kpi": {
                    "prefix": "/kpi",
                    "endpoints": [
                        "POST /kpi/runs - Run KPIs now",
                        "GET /kpi/runs/latest - Latest KPI report",
                        "GET /kpi/cycles/{cycle} - Latest rows for one cycle",
                        "GET /kpi/cache/stats - Upstream cache statistics",
                        "DELETE /kpi/cache - Clear the upstream cache"
                    ]
                },
                "snapshots": {
                    "prefix": "/snapshots",
                    "endpoints": [
                        "GET /snapshots - List snapshot metadata",
                        "GET /snapshots/{group}/{cycle} - Snapshot with committed items"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "cycle_kpi.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.environment == "development",
        log_level="info"
    )
