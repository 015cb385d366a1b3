"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Idempotency lives in the persistence layer: the dispatch-mark unique
constraint and the "escalated_at IS NULL" conditional update are the only
serialization points between overlapping runs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from casewatch.config import NotificationKind, RuleScope
from casewatch.core import ResourceNotFoundException
from casewatch.shared.infrastructure.clock import Clock
from casewatch.shared.infrastructure.logging import get_logger
from casewatch.sla.domain import (
    WorkItem, DeadlineRule, NotificationRecord, ReminderDispatchMark,
    ResolutionOutcome, CivilCalendar, SLAConfig, ResolvedRule,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IWorkItemRepository(ABC):
    """Interface for work item access (deadline-relevant fields only)."""

    @abstractmethod
    async def get_by_id(self, item_id: str) -> Optional[WorkItem]:
        """Get a non-deleted work item by ID."""

    @abstractmethod
    async def list_tracked(self) -> List[WorkItem]:
        """Non-deleted items that have a deadline (paused ones included)."""

    @abstractmethod
    async def list_overdue_unescalated(self, now: datetime) -> List[WorkItem]:
        """Non-deleted items with deadline < now and no escalation yet."""

    @abstractmethod
    async def is_dispatchable(self, item_id: str) -> bool:
        """Current store state: the item exists, is not deleted and is not paused."""

    @abstractmethod
    async def mark_escalated(self, item_id: str, now: datetime) -> bool:
        """Set escalated_at if still null, unpaused and overdue. True if this call won."""

    @abstractmethod
    async def mark_resolved(self, item_id: str, now: datetime, note: Optional[str]) -> bool:
        """Set the resolution instant if escalated and unresolved. True if this call won."""

    @abstractmethod
    async def list_escalated(
        self,
        include_resolved: bool = False,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None,
        organization_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[WorkItem]:
        """Escalated items, most recent escalation first."""

    @abstractmethod
    async def count_escalations(
        self,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None,
        organization_id: Optional[str] = None
    ) -> Tuple[int, int]:
        """(unresolved, resolved) escalation counts."""


class IDeadlineRuleRepository(ABC):
    """Interface for deadline rule access."""

    @abstractmethod
    async def list_active(self, category: str, organization_id: Optional[str]) -> List[DeadlineRule]:
        """
        Active rules for exactly this scope (organization_id None = global),
        most recently created first.
        """

    @abstractmethod
    async def list(self, category: Optional[str] = None, include_inactive: bool = True) -> List[DeadlineRule]:
        """List rules for administration."""

    @abstractmethod
    async def get_by_id(self, rule_id: str) -> Optional[DeadlineRule]:
        """Get rule by ID."""

    @abstractmethod
    async def create(self, rule: DeadlineRule) -> DeadlineRule:
        """Create new rule."""

    @abstractmethod
    async def update(self, rule: DeadlineRule) -> DeadlineRule:
        """Persist changes to an existing rule."""

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        """Delete a rule. False if it did not exist."""


class IReminderMarkRepository(ABC):
    """Interface for reminder dispatch marks."""

    @abstractmethod
    async def exists(self, item_id: str, days_before: int) -> bool:
        """Whether the reminder for (item, offset) has been recorded."""

    @abstractmethod
    async def try_insert(self, mark: ReminderDispatchMark) -> bool:
        """
        Insert-if-absent, guarded by the item still being unpaused.
        True only if this call created the mark.
        """

    @abstractmethod
    async def list_days_for_item(self, item_id: str) -> List[int]:
        """Offsets already dispatched for an item."""


class INotificationRepository(ABC):
    """Interface for the write-only notification outbox."""

    @abstractmethod
    async def add_many(self, records: Sequence[NotificationRecord]) -> int:
        """Write notification records. Returns how many were written."""


class IRoleDirectory(ABC):
    """Interface onto the user/role subsystem."""

    @abstractmethod
    async def members_with_role(self, role: str, organization_id: Optional[str]) -> List[str]:
        """
        IDs of active users holding `role` (case-insensitive). A null
        organization does not narrow the lookup.
        """


class IUnitOfWork(ABC):
    """Transaction boundary for one step of a scan."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the current writes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the current writes."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


# ========== Counters ==========

REMINDERS_SENT = "reminders_sent"
REMINDER_NOTIFICATIONS = "reminder_notifications"
ESCALATIONS_RAISED = "escalations_raised"
ESCALATION_NOTIFICATIONS = "escalation_notifications"
ITEMS_SCANNED = "items_scanned"
SKIPPED_PAUSED = "skipped_paused"
DUPLICATES_SKIPPED = "duplicates_skipped"


def _bump(counters: Dict[str, int], key: str, amount: int = 1) -> None:
    counters[key] = counters.get(key, 0) + amount


# ========== Rule Resolution ==========

class RuleResolver:
    """
    Picks the most specific active rule for a work item.

    Lookup order: organization rule, global rule, configured default. Rules
    are treated as immutable for the lifetime of one resolver, so results are
    cached per (category, organization).
    """

    def __init__(
        self,
        rule_repository: IDeadlineRuleRepository,
        config_provider: ISLAConfigProvider
    ):
        self._rule_repo = rule_repository
        self._config_provider = config_provider
        self._cache: Dict[Tuple[str, Optional[str]], ResolvedRule] = {}

    async def resolve(self, category: Optional[str], organization_id: Optional[str]) -> ResolvedRule:
        key = (category or "", organization_id)
        if key not in self._cache:
            self._cache[key] = await self._lookup(*key)
        return self._cache[key]

    async def _lookup(self, category: str, organization_id: Optional[str]) -> ResolvedRule:
        config = self._config_provider.get_config()

        scopes = [(organization_id, RuleScope.ORGANIZATION)] if organization_id else []
        scopes.append((None, RuleScope.GLOBAL))

        for scope_org, scope in scopes:
            rules = await self._rule_repo.list_active(category, scope_org)
            if not rules:
                continue
            if len(rules) > 1:
                logger.warning(
                    "Ambiguous deadline rules, using most recently created",
                    extra={
                        "category": category,
                        "organization_id": scope_org,
                        "rule_ids": [r.id for r in rules],
                    }
                )
            rule = rules[0]
            return ResolvedRule(
                reminder_days=tuple(rule.reminder_days_before or config.default_reminder_days),
                escalation_role=rule.escalation_role or config.default_escalation_role,
                scope=scope,
                rule_id=rule.id,
            )

        return config.default_rule()


# ========== Recipient Resolution ==========

class RecipientStrategy(ABC):
    """One tier of the notification fan-out."""

    name = "strategy"

    @abstractmethod
    async def recipients(self, item: WorkItem, role: Optional[str]) -> List[str]:
        """Zero or more recipient IDs."""


class RoleMembersStrategy(RecipientStrategy):
    """Everyone holding the escalation role in the item's organization."""

    name = "role_members"

    def __init__(self, directory: IRoleDirectory):
        self._directory = directory

    async def recipients(self, item: WorkItem, role: Optional[str]) -> List[str]:
        if not role:
            return []
        return await self._directory.members_with_role(role, item.organization_id)


class ResponsiblePartiesStrategy(RecipientStrategy):
    """The item's own team."""

    name = "responsible_parties"

    async def recipients(self, item: WorkItem, role: Optional[str]) -> List[str]:
        return list(item.responsible_party_ids)


class RecipientResolver:
    """
    Tries strategies in order and returns the first non-empty result.

    An empty result means broadcast (a single record with no recipient).
    """

    def __init__(self, strategies: Sequence[RecipientStrategy]):
        self._strategies = list(strategies)

    async def resolve(self, item: WorkItem, role: Optional[str] = None) -> Tuple[List[str], str]:
        for strategy in self._strategies:
            found = await strategy.recipients(item, role)
            unique = list(dict.fromkeys(found))
            if unique:
                return unique, strategy.name
        return [], "broadcast"


def fan_out(
    item: WorkItem,
    recipient_ids: Sequence[str],
    title: str,
    body: str,
    kind: str
) -> List[NotificationRecord]:
    """One record per recipient, or one broadcast record when there are none."""
    if not recipient_ids:
        return [NotificationRecord(title=title, body=body, kind=kind, work_item_id=item.id)]
    return [
        NotificationRecord(title=title, body=body, kind=kind, work_item_id=item.id, recipient_id=rid)
        for rid in recipient_ids
    ]


def reminder_message(item: WorkItem, days_before: int, calendar: CivilCalendar) -> Tuple[str, str]:
    unit = "day" if days_before == 1 else "days"
    title = f'SLA: "{item.title}" is due in {days_before} {unit}'
    body = f"SLA deadline: {calendar.civil_date(item.deadline)}"
    return title, body


def escalation_message(item: WorkItem, calendar: CivilCalendar) -> Tuple[str, str]:
    title = f'[ESCALATION] SLA missed: "{item.title}"'
    body = (
        f"The SLA deadline ({calendar.civil_date(item.deadline)}) has passed. "
        f"Work item ID: {item.id}"
    )
    return title, body


# ========== Reminder Dispatcher ==========

class ReminderDispatcher:
    """
    Sends "N days before deadline" reminders, at most once per (item, offset).

    Notifications are committed before the dispatch mark. A crash between
    the two commits can repeat a notification on the next run but can
    never create a second mark.
    """

    def __init__(
        self,
        work_items: IWorkItemRepository,
        rules: RuleResolver,
        marks: IReminderMarkRepository,
        notifications: INotificationRepository,
        unit_of_work: IUnitOfWork,
        clock: Clock,
        calendar: CivilCalendar
    ):
        self._work_items = work_items
        self._rules = rules
        self._marks = marks
        self._notifications = notifications
        self._uow = unit_of_work
        self._clock = clock
        self._calendar = calendar
        self._recipients = RecipientResolver([ResponsiblePartiesStrategy()])

    async def run(self, counters: Dict[str, int], details: Optional[Dict[str, list]] = None) -> int:
        """
        Scan all tracked items once. Counters are updated as each item
        completes, so they stay accurate if the scan aborts.

        Returns:
            Number of reminders (dispatch marks) written by this call
        """
        now = self._clock.now()
        sent = 0

        for item in await self._work_items.list_tracked():
            _bump(counters, ITEMS_SCANNED)
            if item.is_paused:
                _bump(counters, SKIPPED_PAUSED)
                continue

            for days_before in await self.dispatch_item(item, now, counters):
                sent += 1
                if details is not None:
                    details.setdefault("reminders", []).append(f"{item.id} ({days_before}d)")

        return sent

    async def dispatch_item(
        self,
        item: WorkItem,
        now: datetime,
        counters: Optional[Dict[str, int]] = None
    ) -> List[int]:
        """Send the reminders due today for one item. Returns offsets marked."""
        counters = counters if counters is not None else {}
        if item.is_paused or item.deadline is None:
            return []

        days_left = self._calendar.days_between(now, item.deadline)
        if days_left < 0:
            return []

        rule = await self._rules.resolve(item.category, item.organization_id)
        marked = []

        for days_before in rule.reminder_days:
            if days_before != days_left:
                continue

            if await self._marks.exists(item.id, days_before):
                _bump(counters, DUPLICATES_SKIPPED)
                continue

            # The scan snapshot may be stale; the pause flag is re-read here
            if not await self._work_items.is_dispatchable(item.id):
                _bump(counters, SKIPPED_PAUSED)
                logger.info(
                    "Work item paused or removed during scan, reminder skipped",
                    extra={"work_item_id": item.id, "days_before": days_before}
                )
                break

            recipient_ids, _ = await self._recipients.resolve(item)
            title, body = reminder_message(item, days_before, self._calendar)
            records = fan_out(item, recipient_ids, title, body, NotificationKind.SLA_REMINDER)

            written = await self._notifications.add_many(records)
            await self._uow.commit()
            _bump(counters, REMINDER_NOTIFICATIONS, written)

            inserted = await self._marks.try_insert(
                ReminderDispatchMark(work_item_id=item.id, days_before=days_before, sent_at=now)
            )
            await self._uow.commit()

            if not inserted:
                # A concurrent run recorded the mark first, or the item was paused
                _bump(counters, DUPLICATES_SKIPPED)
                logger.info(
                    "Reminder mark not recorded",
                    extra={"work_item_id": item.id, "days_before": days_before}
                )
                continue

            _bump(counters, REMINDERS_SENT)
            marked.append(days_before)
            logger.info(
                "SLA reminder dispatched",
                extra={
                    "work_item_id": item.id,
                    "days_before": days_before,
                    "recipients": written,
                    "rule_scope": rule.scope,
                }
            )

        return marked


# ========== Escalation State Machine ==========

class EscalationService:
    """
    Tracking -> Escalated transition for overdue items.

    The escalation instant is claimed with a conditional write and the
    escalation notifications are committed in the same transaction.
    """

    def __init__(
        self,
        work_items: IWorkItemRepository,
        rules: RuleResolver,
        directory: IRoleDirectory,
        notifications: INotificationRepository,
        unit_of_work: IUnitOfWork,
        clock: Clock,
        calendar: CivilCalendar
    ):
        self._work_items = work_items
        self._rules = rules
        self._notifications = notifications
        self._uow = unit_of_work
        self._clock = clock
        self._calendar = calendar
        self._recipients = RecipientResolver([
            RoleMembersStrategy(directory),
            ResponsiblePartiesStrategy(),
        ])

    async def run(self, counters: Dict[str, int], details: Optional[Dict[str, list]] = None) -> int:
        """
        Escalate every eligible overdue item.

        Returns:
            Number of items escalated by this call
        """
        now = self._clock.now()
        escalated = 0

        for item in await self._work_items.list_overdue_unescalated(now):
            if item.is_paused:
                _bump(counters, SKIPPED_PAUSED)
                continue

            if await self.escalate_item(item, now, counters):
                escalated += 1
                if details is not None:
                    details.setdefault("escalations", []).append(item.id)

        return escalated

    async def escalate_item(
        self,
        item: WorkItem,
        now: datetime,
        counters: Optional[Dict[str, int]] = None
    ) -> bool:
        """Escalate one item. False if it was not eligible or another run won."""
        counters = counters if counters is not None else {}
        if not item.is_eligible_for_escalation(now):
            return False

        rule = await self._rules.resolve(item.category, item.organization_id)

        if not await self._work_items.mark_escalated(item.id, now):
            await self._uow.rollback()
            _bump(counters, DUPLICATES_SKIPPED)
            logger.info(
                "Escalation already recorded by a concurrent run",
                extra={"work_item_id": item.id}
            )
            return False

        recipient_ids, tier = await self._recipients.resolve(item, rule.escalation_role)
        title, body = escalation_message(item, self._calendar)
        records = fan_out(item, recipient_ids, title, body, NotificationKind.SLA_ESCALATION)

        written = await self._notifications.add_many(records)
        await self._uow.commit()

        item.escalated_at = now
        _bump(counters, ESCALATIONS_RAISED)
        _bump(counters, ESCALATION_NOTIFICATIONS, written)
        logger.info(
            "Work item escalated",
            extra={
                "work_item_id": item.id,
                "escalation_role": rule.escalation_role,
                "recipient_tier": tier,
                "recipients": written,
            }
        )
        return True


# ========== Resolution Workflow ==========

class ResolutionService:
    """Human-triggered Escalated -> Resolved transition."""

    def __init__(
        self,
        work_items: IWorkItemRepository,
        unit_of_work: IUnitOfWork,
        clock: Clock
    ):
        self._work_items = work_items
        self._uow = unit_of_work
        self._clock = clock

    async def resolve(self, item_id: str, note: Optional[str] = None) -> str:
        """
        Close an escalation.

        Returns:
            ResolutionOutcome.RESOLVED, NOT_FOUND (unknown item or nothing
            escalated) or ALREADY_RESOLVED. Only RESOLVED changes state.
        """
        note = (note or "").strip() or None
        now = self._clock.now()

        if await self._work_items.mark_resolved(item_id, now, note):
            await self._uow.commit()
            logger.info("Escalation resolved", extra={"work_item_id": item_id})
            return ResolutionOutcome.RESOLVED

        item = await self._work_items.get_by_id(item_id)
        if item is None or item.escalated_at is None:
            return ResolutionOutcome.NOT_FOUND
        return ResolutionOutcome.ALREADY_RESOLVED


# ========== Administration & Queries ==========

class DeadlineRuleService:
    """Operator-facing rule management."""

    def __init__(
        self,
        rule_repository: IDeadlineRuleRepository,
        config_provider: ISLAConfigProvider,
        unit_of_work: IUnitOfWork
    ):
        self._rule_repo = rule_repository
        self._config_provider = config_provider
        self._uow = unit_of_work

    async def list_rules(self, category: Optional[str] = None, include_inactive: bool = True) -> List[DeadlineRule]:
        return await self._rule_repo.list(category=category, include_inactive=include_inactive)

    async def create_rule(self, rule: DeadlineRule) -> DeadlineRule:
        if not rule.reminder_days_before:
            rule.reminder_days_before = list(self._config_provider.get_config().default_reminder_days)
        created = await self._rule_repo.create(rule)
        await self._uow.commit()
        logger.info("Deadline rule created", extra={"rule_id": created.id, "category": created.category})
        return created

    async def update_rule(self, rule_id: str, changes: dict) -> DeadlineRule:
        rule = await self._rule_repo.get_by_id(rule_id)
        if rule is None:
            raise ResourceNotFoundException("DeadlineRule", rule_id)

        for name, value in changes.items():
            setattr(rule, name, value)
        rule.normalize()
        if not rule.reminder_days_before:
            rule.reminder_days_before = list(self._config_provider.get_config().default_reminder_days)

        updated = await self._rule_repo.update(rule)
        await self._uow.commit()
        logger.info("Deadline rule updated", extra={"rule_id": rule_id, "fields": sorted(changes)})
        return updated

    async def delete_rule(self, rule_id: str) -> None:
        if not await self._rule_repo.delete(rule_id):
            raise ResourceNotFoundException("DeadlineRule", rule_id)
        await self._uow.commit()
        logger.info("Deadline rule deleted", extra={"rule_id": rule_id})

    async def preview(self, category: Optional[str], organization_id: Optional[str]) -> ResolvedRule:
        resolver = RuleResolver(self._rule_repo, self._config_provider)
        return await resolver.resolve(category, organization_id)


class EscalationQueryService:
    """Read side for escalations and per-item SLA status."""

    def __init__(
        self,
        work_items: IWorkItemRepository,
        marks: IReminderMarkRepository,
        rules: RuleResolver,
        clock: Clock,
        calendar: CivilCalendar
    ):
        self._work_items = work_items
        self._marks = marks
        self._rules = rules
        self._clock = clock
        self._calendar = calendar

    async def list_escalations(
        self,
        include_resolved: bool = False,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None,
        organization_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[WorkItem], Dict[str, int]]:
        items = await self._work_items.list_escalated(
            include_resolved=include_resolved,
            escalated_from=escalated_from,
            escalated_to=escalated_to,
            organization_id=organization_id,
            limit=limit,
            offset=offset,
        )
        unresolved, resolved = await self._work_items.count_escalations(
            escalated_from=escalated_from,
            escalated_to=escalated_to,
            organization_id=organization_id,
        )
        summary = {"total": unresolved + resolved, "unresolved": unresolved, "resolved": resolved}
        return items, summary

    async def item_status(self, item_id: str) -> Optional[dict]:
        item = await self._work_items.get_by_id(item_id)
        if item is None:
            return None

        rule = await self._rules.resolve(item.category, item.organization_id)
        days_left = None
        if item.deadline is not None:
            days_left = self._calendar.days_between(self._clock.now(), item.deadline)

        return {
            "item": item,
            "state": item.state,
            "paused": item.is_paused,
            "days_left": days_left,
            "rule": rule,
            "dispatched_days": sorted(await self._marks.list_days_for_item(item.id), reverse=True),
        }
