"""
Ledger Domain Layer
====================

Job runs, the context handed to running jobs, and the health snapshot.
"""

from casewatch.ledger.domain.entities import JobRun, JobContext, HealthReport

__all__ = ["JobRun", "JobContext", "HealthReport"]
