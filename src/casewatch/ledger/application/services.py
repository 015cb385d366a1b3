"""
Ledger Application Services
============================

Wraps named jobs with an append-only run log, re-runs them on demand and
reports service health.

A run row is opened before the job starts and closed when it ends, whatever
the outcome. Job failures are recorded, not raised: the caller gets the
closed JobRun back.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from casewatch.config import JobStatus, JobTrigger
from casewatch.core import JobNotRegisteredException
from casewatch.ledger.domain import JobRun, JobContext, HealthReport
from casewatch.shared.infrastructure.clock import Clock
from casewatch.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Job = Callable[[JobContext], Awaitable[None]]
CountSource = Callable[[], Awaitable[Dict[str, int]]]


# ========== Repository Interfaces ==========

class IJobRunRepository(ABC):
    """Interface for the job run log."""

    @abstractmethod
    async def open(self, run: JobRun) -> JobRun:
        """Persist a new running row and return it with its id."""

    @abstractmethod
    async def close(self, run: JobRun) -> JobRun:
        """Write the final outcome of a run."""

    @abstractmethod
    async def list(
        self,
        job_name: Optional[str] = None,
        failed_only: bool = False,
        limit: int = 100
    ) -> List[JobRun]:
        """Runs newest first."""

    @abstractmethod
    async def count_failed_since(self, since: datetime) -> int:
        """Failed runs started at or after `since`."""


# ========== Job Registry ==========

class JobRegistry:
    """Named async jobs that the ledger, scheduler and triggers can run."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}

    def register(self, name: str, job: Job) -> None:
        if name in self._jobs:
            logger.warning("Replacing registered job", extra={"job_name": name})
        self._jobs[name] = job

    def get(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise JobNotRegisteredException(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    @property
    def names(self) -> List[str]:
        return sorted(self._jobs)


# ========== Execution Ledger ==========

class ExecutionLedger:
    """Runs registered jobs and records every invocation."""

    def __init__(
        self,
        repository: IJobRunRepository,
        registry: JobRegistry,
        clock: Clock
    ):
        self._repository = repository
        self._registry = registry
        self._clock = clock

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    async def run_job(self, name: str, trigger: str = JobTrigger.MANUAL) -> JobRun:
        """
        Run one job and log the outcome.

        Raises:
            JobNotRegisteredException: If no job is registered under `name`
                (no row is written in that case)
        """
        job = self._registry.get(name)

        run = await self._repository.open(
            JobRun(job_name=name, trigger=trigger, started_at=self._clock.now())
        )
        context = JobContext(job_name=name, trigger=trigger, started_at=run.started_at)

        logger.info("Job started", extra={"job_name": name, "trigger": trigger, "run_id": run.id})
        start = time.perf_counter()

        try:
            await job(context)
        except Exception as e:
            run.status = JobStatus.FAILED
            run.error_message = str(e) or e.__class__.__name__
            logger.error(
                "Job failed",
                extra={
                    "job_name": name,
                    "run_id": run.id,
                    "error": run.error_message,
                    "counters": dict(context.counters),
                },
                exc_info=True
            )
        else:
            if context.partial_reason:
                run.status = JobStatus.PARTIAL
                run.error_message = context.partial_reason
            else:
                run.status = JobStatus.SUCCESS

        run.finished_at = self._clock.now()
        run.duration_ms = int((time.perf_counter() - start) * 1000)
        run.counters = dict(context.counters)
        run.details = dict(context.details) or None

        run = await self._repository.close(run)

        logger.info(
            "Job finished",
            extra={
                "job_name": name,
                "run_id": run.id,
                "status": run.status,
                "duration_ms": run.duration_ms,
                "counters": run.counters,
            }
        )
        return run

    async def retry(self, name: str) -> Tuple[str, JobRun]:
        """Re-run a job now. Returns the operator acknowledgement and the run."""
        run = await self.run_job(name, JobTrigger.MANUAL)
        return f"Job '{name}' finished: {run.status}", run

    async def list_runs(
        self,
        job_name: Optional[str] = None,
        failed_only: bool = False,
        limit: int = 100
    ) -> List[JobRun]:
        return await self._repository.list(job_name=job_name, failed_only=failed_only, limit=limit)


# ========== Health ==========

class HealthService:
    """
    Store latency, entity counts and recent runs.

    Never raises and never writes a ledger row.
    """

    def __init__(
        self,
        ping: Callable[[], Awaitable[None]],
        repository: IJobRunRepository,
        clock: Clock,
        count_sources: Sequence[CountSource] = (),
        recent_runs: int = 10
    ):
        self._ping = ping
        self._repository = repository
        self._clock = clock
        self._count_sources = list(count_sources)
        self._recent_runs = recent_runs

    async def check(self) -> HealthReport:
        now = self._clock.now()
        start = time.perf_counter()

        try:
            await self._ping()
        except Exception as e:
            logger.error("Health check: store unreachable", extra={"error": str(e)})
            return HealthReport(
                status="degraded",
                checked_at=now,
                database_ok=False,
                database_error=str(e) or e.__class__.__name__,
            )

        report = HealthReport(
            status="ok",
            checked_at=now,
            database_ok=True,
            database_latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )

        try:
            for source in self._count_sources:
                report.counts.update(await source())
            report.pending_review = report.counts.get("active_escalations", 0)
            report.failed_last_24h = await self._repository.count_failed_since(now - timedelta(hours=24))
            report.recent_runs = await self._repository.list(limit=self._recent_runs)
        except Exception as e:
            logger.error("Health check: summary query failed", extra={"error": str(e)})
            report.status = "degraded"
            report.database_error = str(e) or e.__class__.__name__

        return report
