"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Boolean, Integer, Text, Uuid, JSON, ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from casewatch.infrastructure.database import Base, UTCDateTime
from casewatch.config import DEFAULT_ESCALATION_ROLE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkItemModel(Base):
    """
    Database model for WorkItem entity.

    Maps to the 'work_items' table. Case management owns everything except
    the escalation columns.
    """
    __tablename__ = "work_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    organization_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)

    # Deadline tracking (written by case management)
    deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Escalation (written by this engine only)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    escalation_resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    escalation_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    assignees: Mapped[List["WorkItemAssigneeModel"]] = relationship(
        back_populates="work_item",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class WorkItemAssigneeModel(Base):
    """
    Responsible party of a work item.

    Maps to the 'work_item_assignees' table.
    """
    __tablename__ = "work_item_assignees"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    work_item_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    work_item: Mapped[WorkItemModel] = relationship(back_populates="assignees")

    __table_args__ = (
        UniqueConstraint("work_item_id", "user_id", name="uq_work_item_assignee"),
    )


class DirectoryUserModel(Base):
    """
    Read-only projection of the user/role subsystem.

    Maps to the 'directory_users' table.
    """
    __tablename__ = "directory_users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class DeadlineRuleModel(Base):
    """
    Database model for DeadlineRule entity.

    Maps to the 'deadline_rules' table.
    """
    __tablename__ = "deadline_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    organization_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    due_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reminder_days_before: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    escalation_role: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_ESCALATION_ROLE)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_deadline_rules_lookup", "category", "organization_id", "is_active"),
    )


class ReminderDispatchMarkModel(Base):
    """
    Database model for ReminderDispatchMark.

    Maps to the 'reminder_dispatch_marks' table. The unique constraint is
    what makes reminders fire at most once per (item, offset).
    """
    __tablename__ = "reminder_dispatch_marks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    work_item_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    days_before: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("work_item_id", "days_before", name="uq_reminder_mark_item_days"),
    )


class NotificationModel(Base):
    """
    Database model for NotificationRecord.

    Maps to the 'notifications' table, consumed by the delivery subsystem.
    """
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    recipient_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    work_item_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
