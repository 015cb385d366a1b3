"""
SLA Domain Entities
====================

Pure Python domain entities for deadline tracking and escalation.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from casewatch.config import EscalationState, DEFAULT_ESCALATION_ROLE
from casewatch.core.exceptions import DomainException
from casewatch.sla.domain.value_objects import normalize_reminder_days


class ResolutionOutcome(str):
    """Result of the human resolution workflow."""
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"


@dataclass
class WorkItem:
    """
    Case-like work item, limited to the fields the deadline engine reads.

    The deadline and pause instants are owned by case management; the
    escalation and resolution instants are owned by this engine.
    """

    id: str
    title: str
    category: Optional[str] = None
    organization_id: Optional[str] = None

    deadline: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    escalation_resolved_at: Optional[datetime] = None
    escalation_note: Optional[str] = None
    deleted_at: Optional[datetime] = None

    responsible_party_ids: List[str] = field(default_factory=list)

    @property
    def is_paused(self) -> bool:
        """Pause gate: a set pause instant suppresses all scanning."""
        return self.paused_at is not None

    @property
    def is_tracked(self) -> bool:
        """Only items with a deadline are under SLA."""
        return self.deadline is not None and self.deleted_at is None

    @property
    def state(self) -> str:
        """Tracking -> Escalated -> Resolved."""
        if self.escalated_at is None:
            return EscalationState.TRACKING
        if self.escalation_resolved_at is None:
            return EscalationState.ESCALATED
        return EscalationState.RESOLVED

    def is_overdue(self, now: datetime) -> bool:
        return self.deadline is not None and self.deadline < now

    def is_eligible_for_escalation(self, now: datetime) -> bool:
        """Deadline passed, not paused, not yet escalated."""
        return (
            self.is_tracked
            and not self.is_paused
            and self.escalated_at is None
            and self.is_overdue(now)
        )


@dataclass
class DeadlineRule:
    """
    Operator-managed deadline rule for a category.

    A null organization scope makes it the global fallback for that
    category.
    """

    id: Optional[str]
    category: str
    reminder_days_before: List[int] = field(default_factory=list)
    escalation_role: str = DEFAULT_ESCALATION_ROLE
    organization_id: Optional[str] = None
    due_days: Optional[int] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Normalise offsets and role on initialization."""
        self.normalize()

    def normalize(self) -> None:
        """Clean offsets and role, validate due_days."""
        self.reminder_days_before = normalize_reminder_days(self.reminder_days_before)
        self.escalation_role = (self.escalation_role or "").strip() or DEFAULT_ESCALATION_ROLE
        if self.due_days is not None and self.due_days < 0:
            raise DomainException("due_days cannot be negative", {"due_days": self.due_days})


@dataclass
class NotificationRecord:
    """
    Durable notification consumed by the delivery subsystem.

    A null recipient means organization-wide broadcast.
    """

    title: str
    body: str
    kind: str
    work_item_id: Optional[str] = None
    recipient_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class ReminderDispatchMark:
    """Proof that the reminder for (work item, offset) already went out."""

    work_item_id: str
    days_before: int
    sent_at: datetime
    id: Optional[str] = None
