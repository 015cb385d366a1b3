"""
Ledger Application Layer
=========================

Job registry, execution ledger, health service and their DTOs.
"""

from casewatch.ledger.application.dto import (
    JobRunResponse,
    JobLogListResponse,
    CronRunResponse,
    RetryJobResponse,
    DatabaseHealth,
    HealthResponse,
)
from casewatch.ledger.application.services import (
    Job,
    JobRegistry,
    ExecutionLedger,
    HealthService,
    IJobRunRepository,
)

__all__ = [
    # DTOs
    "JobRunResponse",
    "JobLogListResponse",
    "CronRunResponse",
    "RetryJobResponse",
    "DatabaseHealth",
    "HealthResponse",
    # Services
    "Job",
    "JobRegistry",
    "ExecutionLedger",
    "HealthService",
    # Repository Interfaces
    "IJobRunRepository",
]
