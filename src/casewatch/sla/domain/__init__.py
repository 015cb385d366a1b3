"""
SLA Domain Layer
================

Domain layer for the deadline/escalation engine.

Contains:
- Entities: Core business objects with identity (WorkItem, DeadlineRule, ...)
- Value Objects: Immutable objects defined by attributes (CivilCalendar,
  SLAConfig, ResolvedRule)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from casewatch.sla.domain.entities import (
    WorkItem,
    DeadlineRule,
    NotificationRecord,
    ReminderDispatchMark,
    ResolutionOutcome,
)
from casewatch.sla.domain.value_objects import (
    CivilCalendar,
    SLAConfig,
    ResolvedRule,
    normalize_reminder_days,
)

__all__ = [
    # Entities
    "WorkItem",
    "DeadlineRule",
    "NotificationRecord",
    "ReminderDispatchMark",
    "ResolutionOutcome",
    # Value Objects
    "CivilCalendar",
    "SLAConfig",
    "ResolvedRule",
    "normalize_reminder_days",
]
