"""
Ledger Infrastructure Layer
============================

Persistence for the job run log.
"""

from casewatch.ledger.infrastructure.models import JobRunModel
from casewatch.ledger.infrastructure.repositories import SQLAlchemyJobRunRepository

__all__ = ["JobRunModel", "SQLAlchemyJobRunRepository"]
