"""
Ledger Controllers (API Routes)
================================

FastAPI routes for the external cron trigger and the operations dashboard.

Controllers are thin - they delegate to the execution ledger and the
health service held on the application state.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from casewatch.config import settings, JobTrigger
from casewatch.core import JobNotRegisteredException
from casewatch.ledger.application import (
    ExecutionLedger, HealthService,
    CronRunResponse, JobRunResponse, JobLogListResponse,
    RetryJobResponse, HealthResponse,
)
from casewatch.shared.api.security import require_cron_secret
from casewatch.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

cron_router = APIRouter(prefix="/cron", tags=["Cron"])
observability_router = APIRouter(prefix="/observability", tags=["Observability"])


# ========== Dependencies ==========

def get_ledger(request: Request) -> ExecutionLedger:
    """Execution ledger built at startup."""
    return request.app.state.ledger


def get_health_service(request: Request) -> HealthService:
    """Health service built at startup."""
    return request.app.state.health_service


# ========== Cron Trigger ==========

@cron_router.api_route(
    "/{job_name}",
    methods=["GET", "POST"],
    response_model=CronRunResponse,
    dependencies=[Depends(require_cron_secret)],
    summary="Run a job from an external scheduler",
    description="""
    Runs the named job once and records it in the ledger.

    The shared secret may be sent as `Authorization: Bearer <secret>`,
    `X-Cron-Secret: <secret>` or `?secret=<secret>`. When no secret is
    configured every call is accepted.

    Returns 500 with `{"ok": false, "error": ...}` when the job fails.
    """,
    responses={
        401: {"description": "Missing or wrong secret"},
        404: {"description": "Unknown job"},
        500: {"description": "Job failed (recorded in the ledger)"},
    }
)
async def trigger_job(
    job_name: str,
    request: Request,
    ledger: ExecutionLedger = Depends(get_ledger)
):
    request_logger = get_context_logger(__name__, getattr(request.state, "correlation_id", None))
    try:
        run = await ledger.run_job(job_name, JobTrigger.CRON)
    except JobNotRegisteredException as e:
        request_logger.warning("Cron call for unknown job", extra={"job_name": job_name})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    if run.is_failed:
        request_logger.error(
            "Cron-triggered job failed",
            extra={"job_name": job_name, "run_id": run.id, "error": run.error_message},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "run_id": run.id, "error": run.error_message},
        )

    return CronRunResponse(
        ok=True,
        run_id=run.id,
        status=run.status,
        counters=run.counters,
        detail=run.details,
    )


# ========== Observability ==========

@observability_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health summary",
    description="""
    Store round-trip latency, entity counts, escalations pending review,
    failed runs in the last 24 hours and the most recent ledger rows.
    Does not write a ledger row.
    """
)
async def health_summary(health: HealthService = Depends(get_health_service)):
    return HealthResponse.from_domain(await health.check())


@observability_router.get(
    "/job-logs",
    response_model=JobLogListResponse,
    summary="List ledger rows",
)
async def list_job_logs(
    job_name: Optional[str] = Query(None, description="Only runs of this job"),
    failed_only: bool = Query(False, description="Only failed runs"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    ledger: ExecutionLedger = Depends(get_ledger)
):
    limit = min(limit or settings.job_log_default_limit, settings.job_log_max_limit)
    runs = await ledger.list_runs(job_name=job_name, failed_only=failed_only, limit=limit)
    return JobLogListResponse(
        data=[JobRunResponse.from_domain(r) for r in runs],
        count=len(runs),
    )


@observability_router.post(
    "/retry-job/{job_name}",
    response_model=RetryJobResponse,
    dependencies=[Depends(require_cron_secret)],
    summary="Re-run a job now",
    description="""
    Runs the job synchronously with trigger `manual`. Always safe to repeat:
    reminders and escalations are idempotent.
    """,
    responses={404: {"description": "Unknown job"}}
)
async def retry_job(
    job_name: str,
    ledger: ExecutionLedger = Depends(get_ledger)
):
    try:
        message, run = await ledger.retry(job_name)
    except JobNotRegisteredException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    logger.info("Manual retry finished", extra={"job_name": job_name, "status": run.status})
    return RetryJobResponse(
        message=message,
        run=JobRunResponse.from_domain(run),
    )
