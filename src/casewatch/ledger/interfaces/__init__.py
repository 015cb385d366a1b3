"""
Ledger Interfaces Layer
========================

Cron trigger and observability routes.
"""

from casewatch.ledger.interfaces.controllers import cron_router, observability_router

__all__ = ["cron_router", "observability_router"]
