"""
Ledger Infrastructure Repositories
===================================

SQLAlchemy implementation of the job run log.

Every call uses its own short session, so ledger rows are durable
independently of whatever the job itself commits or rolls back.
"""

from datetime import datetime
from typing import AsyncContextManager, Callable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from casewatch.config import JobStatus
from casewatch.core import RepositoryException
from casewatch.ledger.application import IJobRunRepository
from casewatch.ledger.domain import JobRun
from casewatch.ledger.infrastructure.models import JobRunModel


class SQLAlchemyJobRunRepository(IJobRunRepository):
    """Job run log backed by the 'job_runs' table."""

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    @staticmethod
    def _to_entity(model: JobRunModel) -> JobRun:
        return JobRun(
            id=str(model.id),
            job_name=model.job_name,
            trigger=model.trigger,
            status=model.status,
            started_at=model.started_at,
            finished_at=model.finished_at,
            duration_ms=model.duration_ms,
            counters=dict(model.counters or {}),
            error_message=model.error_message,
            details=model.details,
        )

    async def open(self, run: JobRun) -> JobRun:
        async with self._session_factory() as session:
            model = JobRunModel(
                job_name=run.job_name,
                trigger=run.trigger,
                status=run.status,
                started_at=run.started_at,
                counters=dict(run.counters),
            )
            session.add(model)
            await session.flush()
            run.id = str(model.id)
        return run

    async def close(self, run: JobRun) -> JobRun:
        if run.id is None:
            raise RepositoryException("Cannot close a job run that was never opened")

        async with self._session_factory() as session:
            model = await session.get(JobRunModel, int(run.id))
            if model is None:
                raise RepositoryException(
                    f"Job run {run.id} not found",
                    {"job_name": run.job_name}
                )

            model.status = run.status
            model.finished_at = run.finished_at
            model.duration_ms = run.duration_ms
            model.counters = dict(run.counters)
            model.error_message = run.error_message
            model.details = run.details

        return run

    async def list(
        self,
        job_name: Optional[str] = None,
        failed_only: bool = False,
        limit: int = 100
    ) -> List[JobRun]:
        stmt = select(JobRunModel)
        if job_name:
            stmt = stmt.where(JobRunModel.job_name == job_name)
        if failed_only:
            stmt = stmt.where(JobRunModel.status == JobStatus.FAILED)
        stmt = stmt.order_by(JobRunModel.started_at.desc(), JobRunModel.id.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(m) for m in result.scalars().all()]

    async def count_failed_since(self, since: datetime) -> int:
        stmt = select(func.count(JobRunModel.id)).where(
            JobRunModel.status == JobStatus.FAILED,
            JobRunModel.started_at >= since,
        )
        async with self._session_factory() as session:
            return int(await session.scalar(stmt) or 0)
