"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime

from casewatch.sla.domain import (
    WorkItem, DeadlineRule, ResolvedRule, normalize_reminder_days,
)


# ========== Type Aliases for Literals ==========
EscalationStateStr = Literal["tracking", "escalated", "resolved"]
RuleScopeStr = Literal["organization", "global", "default"]
ResolutionOutcomeStr = Literal["resolved", "not_found", "already_resolved"]


def _clean_days(v):
    if v is None:
        return None
    if not isinstance(v, list):
        raise ValueError("reminder_days_before must be a list of integers")
    for day in v:
        if isinstance(day, bool) or not isinstance(day, int) or day <= 0:
            raise ValueError("reminder_days_before must contain positive integers")
    return normalize_reminder_days(v)


# ========== Request DTOs ==========

class DeadlineRuleCreateRequest(BaseModel):
    """Request model for creating a deadline rule."""
    category: str = Field(..., min_length=1, max_length=100, description="Work item category")
    organization_id: Optional[str] = Field(None, description="Owning organization (null = global rule)")
    due_days: Optional[int] = Field(None, ge=0, description="Informational due offset in days")
    reminder_days_before: List[int] = Field(
        default_factory=lambda: [7, 3, 1],
        description="Days before the deadline on which reminders fire"
    )
    escalation_role: str = Field(default="partner", max_length=50, description="Role notified on escalation")
    is_active: bool = Field(default=True)

    @field_validator("reminder_days_before", mode="before")
    @classmethod
    def validate_reminder_days(cls, v):
        """Positive integers only; duplicates collapse, largest first."""
        return _clean_days(v) or []

    @field_validator("category", "escalation_role")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    def to_domain(self) -> DeadlineRule:
        return DeadlineRule(
            id=None,
            category=self.category,
            organization_id=self.organization_id,
            due_days=self.due_days,
            reminder_days_before=self.reminder_days_before,
            escalation_role=self.escalation_role,
            is_active=self.is_active,
        )


class DeadlineRuleUpdateRequest(BaseModel):
    """Partial update for a deadline rule."""
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    organization_id: Optional[str] = None
    due_days: Optional[int] = Field(None, ge=0)
    reminder_days_before: Optional[List[int]] = None
    escalation_role: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None

    @field_validator("reminder_days_before", mode="before")
    @classmethod
    def validate_reminder_days(cls, v):
        return _clean_days(v)


class ResolveEscalationRequest(BaseModel):
    """Request model for resolving an escalation."""
    note: Optional[str] = Field(None, max_length=4000, description="Resolution note")


# ========== Response DTOs ==========

class DeadlineRuleResponse(BaseModel):
    """Response model for a deadline rule."""
    id: str
    category: str
    organization_id: Optional[str] = None
    due_days: Optional[int] = None
    reminder_days_before: List[int]
    escalation_role: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, rule: DeadlineRule) -> "DeadlineRuleResponse":
        return cls(
            id=rule.id,
            category=rule.category,
            organization_id=rule.organization_id,
            due_days=rule.due_days,
            reminder_days_before=rule.reminder_days_before,
            escalation_role=rule.escalation_role,
            is_active=rule.is_active,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class ResolvedRuleResponse(BaseModel):
    """Response model for rule resolution."""
    reminder_days: List[int]
    escalation_role: str
    scope: RuleScopeStr
    rule_id: Optional[str] = None

    @classmethod
    def from_domain(cls, rule: ResolvedRule) -> "ResolvedRuleResponse":
        return cls(
            reminder_days=list(rule.reminder_days),
            escalation_role=rule.escalation_role,
            scope=rule.scope,
            rule_id=rule.rule_id,
        )


class EscalatedItemResponse(BaseModel):
    """Response model for an escalated work item."""
    id: str
    title: str
    category: Optional[str] = None
    organization_id: Optional[str] = None
    deadline: Optional[datetime] = None
    escalated_at: datetime
    escalation_resolved_at: Optional[datetime] = None
    escalation_note: Optional[str] = None
    state: EscalationStateStr
    responsible_party_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, item: WorkItem) -> "EscalatedItemResponse":
        return cls(
            id=item.id,
            title=item.title,
            category=item.category,
            organization_id=item.organization_id,
            deadline=item.deadline,
            escalated_at=item.escalated_at,
            escalation_resolved_at=item.escalation_resolved_at,
            escalation_note=item.escalation_note,
            state=item.state,
            responsible_party_ids=item.responsible_party_ids,
        )


class EscalationSummary(BaseModel):
    """Summary statistics for escalations."""
    total: int
    unresolved: int
    resolved: int


class EscalationListResponse(BaseModel):
    """Response model for the escalation list."""
    data: List[EscalatedItemResponse]
    summary: EscalationSummary


class ResolveEscalationResponse(BaseModel):
    """Response model for a successful resolution."""
    item_id: str
    outcome: ResolutionOutcomeStr
    escalation_resolved_at: Optional[datetime] = None
    escalation_note: Optional[str] = None


class WorkItemSLAStatusResponse(BaseModel):
    """Response model for one item's deadline status."""
    item_id: str
    state: EscalationStateStr
    paused: bool
    deadline: Optional[datetime] = None
    days_left: Optional[int] = Field(None, description="Whole civil days until the deadline")
    reminder_days: List[int]
    dispatched_days: List[int]
    escalation_role: str
    rule_scope: RuleScopeStr
    escalated_at: Optional[datetime] = None
    escalation_resolved_at: Optional[datetime] = None
