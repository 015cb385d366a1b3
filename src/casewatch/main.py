"""
Casewatch - Main Application
=============================

Deadline tracking and escalation engine for case-like work items.

Modules:
- SLA: Rule resolution, reminders, escalation, resolution workflow
- Ledger: Job runs, manual retry, cron trigger, health summary

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from casewatch.config import settings, SLA_JOB_NAME, JobTrigger

# Infrastructure
from casewatch.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context, ping,
)

# Shared kernel
from casewatch.shared.infrastructure.clock import Clock, SystemClock
from casewatch.shared.infrastructure.logging import setup_logging, get_logger
from casewatch.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)

# SLA Module
from casewatch.sla.domain import CivilCalendar
from casewatch.sla.infrastructure import SLAConfigManager, SLAScheduler, SQLAlchemySLAStatistics
from casewatch.sla.services import SLACronJob
from casewatch.sla.interfaces import sla_router

# Ledger Module
from casewatch.ledger.application import JobRegistry, ExecutionLedger, HealthService
from casewatch.ledger.infrastructure import SQLAlchemyJobRunRepository
from casewatch.ledger.interfaces import cron_router, observability_router

logger = get_logger(__name__)


def configure_app_state(
    app: FastAPI,
    clock: Optional[Clock] = None,
    config_manager: Optional[SLAConfigManager] = None,
    calendar: Optional[CivilCalendar] = None
) -> ExecutionLedger:
    """
    Build the services the routes depend on and attach them to app.state.

    The database must already be initialized. Also used by the serverless
    entry point and the test suite, where the lifespan does not run.
    """
    clock = clock or SystemClock()
    calendar = calendar or CivilCalendar(settings.civil_utc_offset_hours)
    if config_manager is None:
        config_manager = SLAConfigManager()
        config_manager.load(settings.sla_config_path)

    registry = JobRegistry()
    registry.register(
        SLA_JOB_NAME,
        SLACronJob(get_session_context, config_manager, clock, calendar)
    )

    job_runs = SQLAlchemyJobRunRepository(get_session_context)
    ledger = ExecutionLedger(job_runs, registry, clock)
    health_service = HealthService(
        ping=ping,
        repository=job_runs,
        clock=clock,
        count_sources=[SQLAlchemySLAStatistics(get_session_context).counts],
        recent_runs=settings.health_recent_runs,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.calendar = calendar
    app.state.sla_config = config_manager
    app.state.ledger = ledger
    app.state.health_service = health_service
    app.state.scheduler = getattr(app.state, "scheduler", None)
    return ledger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Load SLA configuration and watch it
    5. Build ledger, job registry and health service
    6. Start the daily scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the config watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Casewatch", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    # If the database is not available the server still starts, but
    # database-dependent endpoints will fail
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    ledger = configure_app_state(app, config_manager=sla_config_manager)

    sla_scheduler = None
    if settings.scheduler_enabled:
        async def sla_daily_job():
            """Scheduled SLA run through the ledger."""
            await ledger.run_job(SLA_JOB_NAME, JobTrigger.SCHEDULE)

        sla_scheduler = SLAScheduler(
            hour=settings.sla_schedule_hour,
            minute=settings.sla_schedule_minute,
            timezone=settings.scheduler_timezone,
        )
        sla_scheduler.start(sla_daily_job)
    else:
        logger.info("SLA scheduler disabled")
    app.state.scheduler = sla_scheduler

    logger.info("Casewatch started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Casewatch")

    if sla_scheduler:
        sla_scheduler.stop()

    sla_config_manager.stop_watching()

    await close_database()

    logger.info("Casewatch shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Casewatch API",
    description="""
    ## Deadline Tracking & Escalation Engine

    Reminds responsible parties before a work item's deadline and escalates
    items that pass it without being paused or resolved.

    ---

    ### SLA Module

    - `GET/POST /sla/rules`, `PATCH/DELETE /sla/rules/{id}` - Deadline rules
    - `GET /sla/rules/resolve` - Which rule applies to a category/organization
    - `GET /sla/escalations` - Escalated items with summary
    - `POST /sla/escalations/{item_id}/resolve` - Close an escalation
    - `GET /sla/items/{item_id}/status` - Days left, offsets, state

    ### Ledger Module

    - `GET|POST /cron/{job_name}` - External scheduler trigger (shared secret)
    - `GET /observability/health` - Store latency, counts, recent runs
    - `GET /observability/job-logs` - Run log
    - `POST /observability/retry-job/{job_name}` - Re-run a job now

    ---

    Days are counted on a fixed UTC+7 civil calendar. Reminders fire at most
    once per item and offset; escalation fires at most once per item.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Last added runs first: the correlation id must exist before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)
app.include_router(cron_router)
app.include_router(observability_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is up",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_config": "loaded",
                        "sla_scheduler": "running",
                        "jobs": ["sla"]
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Liveness endpoint for load balancers and orchestrators.

    The detailed summary (store latency, counts, runs) lives at
    /observability/health.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    ledger = getattr(request.app.state, "ledger", None)

    checks = {
        "sla_config": "loaded" if getattr(request.app.state, "sla_config", None) else "not_loaded",
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "jobs": ledger.registry.names if ledger else [],
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Casewatch",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {"prefix": "/sla"},
            "ledger": {"prefix": ["/cron", "/observability"]}
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "casewatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
