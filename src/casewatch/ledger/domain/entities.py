"""
Ledger Domain Entities
=======================

Core objects of the execution ledger.

A JobRun is one append-only row per job invocation. A JobContext is what a
running job sees: live counters and details the ledger snapshots when the
run closes, including when the job raises halfway.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from casewatch.config import JobStatus, JobTrigger


@dataclass
class JobRun:
    """
    One invocation of a named job.

    `finished_at` and `duration_ms` stay None while the run is in flight.
    """
    job_name: str
    started_at: datetime
    trigger: str = JobTrigger.MANUAL
    status: str = JobStatus.RUNNING
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    counters: Dict[str, int] = field(default_factory=dict)
    error_message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    id: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED


@dataclass
class JobContext:
    """
    Handle passed to a running job.

    Jobs bump `counters` as work completes so a failure still leaves an
    accurate tally behind.
    """
    job_name: str
    trigger: str
    started_at: datetime
    counters: Dict[str, int] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    partial_reason: Optional[str] = None

    def mark_partial(self, reason: str) -> None:
        """Close the run as `partial` instead of `success`."""
        self.partial_reason = reason


@dataclass
class HealthReport:
    """Snapshot returned by the health check."""
    status: str
    checked_at: datetime
    database_ok: bool
    database_latency_ms: Optional[float] = None
    database_error: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)
    pending_review: int = 0
    failed_last_24h: int = 0
    recent_runs: List[JobRun] = field(default_factory=list)
