"""
Ledger Application DTOs
========================

Response models for the cron trigger and observability endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from casewatch.ledger.domain import JobRun, HealthReport


class JobRunResponse(BaseModel):
    """One ledger row."""
    id: Optional[str] = None
    job_name: str
    trigger: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    counters: Dict[str, int] = Field(default_factory=dict)
    error_message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_domain(cls, run: JobRun) -> "JobRunResponse":
        return cls(
            id=run.id,
            job_name=run.job_name,
            trigger=run.trigger,
            status=run.status,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_ms=run.duration_ms,
            counters=run.counters,
            error_message=run.error_message,
            details=run.details,
        )


class JobLogListResponse(BaseModel):
    """Ledger listing."""
    data: List[JobRunResponse]
    count: int


class CronRunResponse(BaseModel):
    """Result of a cron trigger."""
    ok: bool
    run_id: Optional[str] = None
    status: str
    counters: Dict[str, int] = Field(default_factory=dict)
    detail: Optional[Dict[str, Any]] = None


class RetryJobResponse(BaseModel):
    """Acknowledgement of a manual retry."""
    message: str
    run: JobRunResponse


class DatabaseHealth(BaseModel):
    ok: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health summary for the operations dashboard."""
    status: str
    checked_at: datetime
    database: DatabaseHealth
    counts: Dict[str, int] = Field(default_factory=dict)
    pending_review: int = 0
    failed_last_24h: int = 0
    recent_runs: List[JobRunResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: HealthReport) -> "HealthResponse":
        return cls(
            status=report.status,
            checked_at=report.checked_at,
            database=DatabaseHealth(
                ok=report.database_ok,
                latency_ms=report.database_latency_ms,
                error=report.database_error,
            ),
            counts=report.counts,
            pending_review=report.pending_review,
            failed_last_24h=report.failed_last_24h,
            recent_runs=[JobRunResponse.from_domain(r) for r in report.recent_runs],
        )
