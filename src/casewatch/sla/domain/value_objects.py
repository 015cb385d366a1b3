"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from casewatch.config import DEFAULT_REMINDER_DAYS, DEFAULT_ESCALATION_ROLE, RuleScope


DAY = timedelta(days=1)


def normalize_reminder_days(values: Optional[Iterable]) -> List[int]:
    """
    Clean a reminder offset list: positive integers only, no duplicates,
    largest offset first. Non-numeric entries are dropped.
    """
    cleaned = set()
    for value in values or []:
        if isinstance(value, bool):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number > 0:
            cleaned.add(number)
    return sorted(cleaned, reverse=True)


class CivilCalendar:
    """
    Day arithmetic on a calendar fixed to one UTC offset.

    The offset never follows the host timezone, so "days left" comes out the
    same wherever and whenever the job runs.

    Example (UTC+7):
        deadline 2024-01-10T01:00+07:00, now 2024-01-08T23:50+07:00
        -> days_between(now, deadline) == 2
    """

    def __init__(self, utc_offset_hours: int = 7):
        self.utc_offset_hours = utc_offset_hours
        self.tz = timezone(timedelta(hours=utc_offset_hours))

    def start_of_civil_day(self, instant: datetime) -> datetime:
        """Start of the civil day containing `instant`, as an aware UTC instant."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        local = instant.astimezone(self.tz)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)

    def days_between(self, a: datetime, b: datetime) -> int:
        """Signed number of whole civil days from `a` to `b`."""
        delta = self.start_of_civil_day(b) - self.start_of_civil_day(a)
        return delta // DAY

    def civil_date(self, instant: datetime) -> str:
        """ISO date (YYYY-MM-DD) of `instant` on the civil calendar."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz).date().isoformat()


@dataclass(frozen=True)
class ResolvedRule:
    """
    Outcome of rule resolution for one (category, organization) pair.

    `scope` says which tier supplied it: organization rule, global rule or
    the configured default.
    """
    reminder_days: Tuple[int, ...]
    escalation_role: str
    scope: str = RuleScope.DEFAULT
    rule_id: Optional[str] = None


class SLAConfig(BaseModel):
    """
    SLA defaults loaded from YAML.

    Applied when no active rule matches a work item.

    This is a value object - immutable and defined by its attributes.
    """
    default_reminder_days: List[int] = Field(
        default_factory=lambda: list(DEFAULT_REMINDER_DAYS),
        description="Reminder offsets (days before deadline) when no rule matches"
    )
    default_escalation_role: str = Field(
        default=DEFAULT_ESCALATION_ROLE,
        description="Role notified on escalation when no rule matches"
    )

    @field_validator("default_reminder_days", mode="before")
    @classmethod
    def validate_reminder_days(cls, v) -> List[int]:
        """Normalise offsets; an empty list means the built-in defaults."""
        days = normalize_reminder_days(v)
        return days or list(DEFAULT_REMINDER_DAYS)

    @field_validator("default_escalation_role", mode="before")
    @classmethod
    def validate_escalation_role(cls, v) -> str:
        role = (v or "").strip() if isinstance(v, str) or v is None else str(v).strip()
        return role or DEFAULT_ESCALATION_ROLE

    def default_rule(self) -> ResolvedRule:
        """The fallback rule built from these defaults."""
        return ResolvedRule(
            reminder_days=tuple(self.default_reminder_days),
            escalation_role=self.default_escalation_role,
            scope=RuleScope.DEFAULT,
        )
