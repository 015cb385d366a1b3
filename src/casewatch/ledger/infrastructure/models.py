"""
Ledger Infrastructure Models
=============================

SQLAlchemy ORM model for the job run log.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from casewatch.infrastructure.database import Base, UTCDateTime


class JobRunModel(Base):
    """
    Database model for JobRun.

    Maps to the 'job_runs' table. Rows are appended per invocation and
    only ever updated once, when the run closes.
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    counters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_job_runs_name_started", "job_name", "started_at"),
    )
