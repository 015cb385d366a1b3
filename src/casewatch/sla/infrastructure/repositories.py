"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. The two idempotency guards of the engine are
implemented here as single statements: insert-if-absent for dispatch marks
and compare-and-swap on null for the escalation instant.
"""

from typing import Callable, AsyncContextManager, Dict, List, Optional, Sequence, Tuple
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update, func, and_, literal
from sqlalchemy import insert as sa_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casewatch.sla.application import (
    IWorkItemRepository, IDeadlineRuleRepository, IReminderMarkRepository,
    INotificationRepository, IRoleDirectory, IUnitOfWork,
)
from casewatch.sla.domain import (
    WorkItem, DeadlineRule, NotificationRecord, ReminderDispatchMark,
)
from casewatch.sla.infrastructure.models import (
    WorkItemModel, DeadlineRuleModel, ReminderDispatchMarkModel,
    NotificationModel, DirectoryUserModel,
)
from casewatch.core import ValidationException
from casewatch.shared.infrastructure.clock import Clock, SystemClock


def _as_uuid(value: Optional[str]) -> Optional[UUID]:
    """Parse an identifier; None when absent or malformed."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Commits/rolls back the session shared by a set of repositories."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class SQLAlchemyWorkItemRepository(IWorkItemRepository):
    """
    SQLAlchemy implementation of the work item repository.

    Reads are refreshed from the database (populate_existing) because the
    conditional updates below bypass the identity map.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: WorkItemModel) -> WorkItem:
        return WorkItem(
            id=str(model.id),
            title=model.title,
            category=model.category,
            organization_id=_str(model.organization_id),
            deadline=model.deadline,
            paused_at=model.paused_at,
            escalated_at=model.escalated_at,
            escalation_resolved_at=model.escalation_resolved_at,
            escalation_note=model.escalation_note,
            deleted_at=model.deleted_at,
            responsible_party_ids=[str(a.user_id) for a in model.assignees],
        )

    async def _fetch(self, stmt) -> List[WorkItem]:
        stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def get_by_id(self, item_id: str) -> Optional[WorkItem]:
        item_uuid = _as_uuid(item_id)
        if item_uuid is None:
            return None

        items = await self._fetch(
            select(WorkItemModel).where(
                WorkItemModel.id == item_uuid,
                WorkItemModel.deleted_at.is_(None),
            )
        )
        return items[0] if items else None

    async def list_tracked(self) -> List[WorkItem]:
        return await self._fetch(
            select(WorkItemModel)
            .where(
                WorkItemModel.deleted_at.is_(None),
                WorkItemModel.deadline.is_not(None),
            )
            .order_by(WorkItemModel.deadline.asc(), WorkItemModel.id.asc())
        )

    async def list_overdue_unescalated(self, now: datetime) -> List[WorkItem]:
        return await self._fetch(
            select(WorkItemModel)
            .where(
                WorkItemModel.deleted_at.is_(None),
                WorkItemModel.deadline.is_not(None),
                WorkItemModel.deadline < now,
                WorkItemModel.escalated_at.is_(None),
            )
            .order_by(WorkItemModel.deadline.asc(), WorkItemModel.id.asc())
        )

    async def is_dispatchable(self, item_id: str) -> bool:
        item_uuid = _as_uuid(item_id)
        if item_uuid is None:
            return False

        result = await self._session.execute(
            select(WorkItemModel.id).where(
                WorkItemModel.id == item_uuid,
                WorkItemModel.paused_at.is_(None),
                WorkItemModel.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none() is not None

    async def mark_escalated(self, item_id: str, now: datetime) -> bool:
        item_uuid = _as_uuid(item_id)
        if item_uuid is None:
            return False

        stmt = (
            update(WorkItemModel)
            .where(
                WorkItemModel.id == item_uuid,
                WorkItemModel.escalated_at.is_(None),
                WorkItemModel.paused_at.is_(None),
                WorkItemModel.deleted_at.is_(None),
                WorkItemModel.deadline.is_not(None),
                WorkItemModel.deadline < now,
            )
            .values(escalated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_resolved(self, item_id: str, now: datetime, note: Optional[str]) -> bool:
        item_uuid = _as_uuid(item_id)
        if item_uuid is None:
            return False

        stmt = (
            update(WorkItemModel)
            .where(
                WorkItemModel.id == item_uuid,
                WorkItemModel.escalated_at.is_not(None),
                WorkItemModel.escalation_resolved_at.is_(None),
                WorkItemModel.deleted_at.is_(None),
            )
            .values(escalation_resolved_at=now, escalation_note=note, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _escalation_conditions(
        self,
        escalated_from: Optional[datetime],
        escalated_to: Optional[datetime],
        organization_id: Optional[str]
    ) -> list:
        conditions = [
            WorkItemModel.deleted_at.is_(None),
            WorkItemModel.escalated_at.is_not(None),
        ]
        if escalated_from is not None:
            conditions.append(WorkItemModel.escalated_at >= escalated_from)
        if escalated_to is not None:
            conditions.append(WorkItemModel.escalated_at <= escalated_to)
        if organization_id is not None:
            conditions.append(WorkItemModel.organization_id == _as_uuid(organization_id))
        return conditions

    async def list_escalated(
        self,
        include_resolved: bool = False,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None,
        organization_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[WorkItem]:
        conditions = self._escalation_conditions(escalated_from, escalated_to, organization_id)
        if not include_resolved:
            conditions.append(WorkItemModel.escalation_resolved_at.is_(None))

        return await self._fetch(
            select(WorkItemModel)
            .where(and_(*conditions))
            .order_by(WorkItemModel.escalated_at.desc(), WorkItemModel.id.asc())
            .limit(limit)
            .offset(offset)
        )

    async def count_escalations(
        self,
        escalated_from: Optional[datetime] = None,
        escalated_to: Optional[datetime] = None,
        organization_id: Optional[str] = None
    ) -> Tuple[int, int]:
        conditions = self._escalation_conditions(escalated_from, escalated_to, organization_id)

        unresolved = await self._session.scalar(
            select(func.count(WorkItemModel.id)).where(
                and_(*conditions), WorkItemModel.escalation_resolved_at.is_(None)
            )
        )
        resolved = await self._session.scalar(
            select(func.count(WorkItemModel.id)).where(
                and_(*conditions), WorkItemModel.escalation_resolved_at.is_not(None)
            )
        )
        return int(unresolved or 0), int(resolved or 0)


class SQLAlchemyDeadlineRuleRepository(IDeadlineRuleRepository):
    """SQLAlchemy implementation of the deadline rule repository."""

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        self._session = session
        self._clock = clock or SystemClock()

    @staticmethod
    def _to_entity(model: DeadlineRuleModel) -> DeadlineRule:
        return DeadlineRule(
            id=str(model.id),
            category=model.category,
            organization_id=_str(model.organization_id),
            due_days=model.due_days,
            reminder_days_before=list(model.reminder_days_before or []),
            escalation_role=model.escalation_role,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _organization_uuid(organization_id: Optional[str]) -> Optional[UUID]:
        if organization_id is None:
            return None
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            raise ValidationException(
                f"Invalid organization id: {organization_id}",
                {"organization_id": organization_id}
            )
        return org_uuid

    async def _get_model(self, rule_id: str) -> Optional[DeadlineRuleModel]:
        rule_uuid = _as_uuid(rule_id)
        if rule_uuid is None:
            return None
        result = await self._session.execute(
            select(DeadlineRuleModel).where(DeadlineRuleModel.id == rule_uuid)
        )
        return result.scalar_one_or_none()

    async def list_active(self, category: str, organization_id: Optional[str]) -> List[DeadlineRule]:
        stmt = select(DeadlineRuleModel).where(
            DeadlineRuleModel.category == category,
            DeadlineRuleModel.is_active.is_(True),
        )
        if organization_id is None:
            stmt = stmt.where(DeadlineRuleModel.organization_id.is_(None))
        else:
            org_uuid = _as_uuid(organization_id)
            if org_uuid is None:
                return []
            stmt = stmt.where(DeadlineRuleModel.organization_id == org_uuid)

        stmt = stmt.order_by(DeadlineRuleModel.created_at.desc(), DeadlineRuleModel.id.desc())
        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list(self, category: Optional[str] = None, include_inactive: bool = True) -> List[DeadlineRule]:
        stmt = select(DeadlineRuleModel)
        if category is not None:
            stmt = stmt.where(DeadlineRuleModel.category == category)
        if not include_inactive:
            stmt = stmt.where(DeadlineRuleModel.is_active.is_(True))
        stmt = stmt.order_by(DeadlineRuleModel.category.asc(), DeadlineRuleModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def get_by_id(self, rule_id: str) -> Optional[DeadlineRule]:
        model = await self._get_model(rule_id)
        return self._to_entity(model) if model else None

    async def create(self, rule: DeadlineRule) -> DeadlineRule:
        now = self._clock.now()
        model = DeadlineRuleModel(
            id=uuid4(),
            category=rule.category,
            organization_id=self._organization_uuid(rule.organization_id),
            due_days=rule.due_days,
            reminder_days_before=list(rule.reminder_days_before),
            escalation_role=rule.escalation_role,
            is_active=rule.is_active,
            created_at=rule.created_at or now,
            updated_at=now,
        )

        self._session.add(model)
        await self._session.flush()

        return self._to_entity(model)

    async def update(self, rule: DeadlineRule) -> DeadlineRule:
        model = await self._get_model(rule.id)
        if model is None:
            raise ValidationException(f"Deadline rule {rule.id} does not exist")

        model.category = rule.category
        model.organization_id = self._organization_uuid(rule.organization_id)
        model.due_days = rule.due_days
        model.reminder_days_before = list(rule.reminder_days_before)
        model.escalation_role = rule.escalation_role
        model.is_active = rule.is_active
        model.updated_at = self._clock.now()

        await self._session.flush()

        return self._to_entity(model)

    async def delete(self, rule_id: str) -> bool:
        model = await self._get_model(rule_id)
        if model is None:
            return False
        await self._session.delete(model)
        await self._session.flush()
        return True


class SQLAlchemyReminderMarkRepository(IReminderMarkRepository):
    """
    SQLAlchemy implementation of dispatch marks.

    try_insert relies on the (work_item_id, days_before) unique constraint,
    never on an in-memory check.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def exists(self, item_id: str, days_before: int) -> bool:
        stmt = select(ReminderDispatchMarkModel.id).where(
            ReminderDispatchMarkModel.work_item_id == _as_uuid(item_id),
            ReminderDispatchMarkModel.days_before == days_before,
        ).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def try_insert(self, mark: ReminderDispatchMark) -> bool:
        mark_uuid = uuid4()
        item_uuid = _as_uuid(mark.work_item_id)
        if item_uuid is None:
            return False

        # INSERT ... SELECT from the work item row: a paused or deleted item
        # yields no row, so no mark
        source = select(
            literal(mark_uuid, ReminderDispatchMarkModel.id.type),
            WorkItemModel.id,
            literal(mark.days_before, ReminderDispatchMarkModel.days_before.type),
            literal(mark.sent_at, ReminderDispatchMarkModel.sent_at.type),
        ).where(
            WorkItemModel.id == item_uuid,
            WorkItemModel.paused_at.is_(None),
            WorkItemModel.deleted_at.is_(None),
        )
        columns = ["id", "work_item_id", "days_before", "sent_at"]
        dialect = self._session.bind.dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = (
                insert(ReminderDispatchMarkModel)
                .from_select(columns, source)
                .on_conflict_do_nothing(index_elements=["work_item_id", "days_before"])
            )
            result = await self._session.execute(stmt)
            inserted = result.rowcount == 1
        else:
            try:
                async with self._session.begin_nested():
                    result = await self._session.execute(
                        sa_insert(ReminderDispatchMarkModel).from_select(columns, source)
                    )
                inserted = result.rowcount == 1
            except IntegrityError:
                inserted = False

        if inserted:
            mark.id = str(mark_uuid)
        return inserted

    async def list_days_for_item(self, item_id: str) -> List[int]:
        item_uuid = _as_uuid(item_id)
        if item_uuid is None:
            return []
        result = await self._session.execute(
            select(ReminderDispatchMarkModel.days_before).where(
                ReminderDispatchMarkModel.work_item_id == item_uuid
            )
        )
        return list(result.scalars().all())


class SQLAlchemyNotificationRepository(INotificationRepository):
    """SQLAlchemy implementation of the notification outbox."""

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        self._session = session
        self._clock = clock or SystemClock()

    async def add_many(self, records: Sequence[NotificationRecord]) -> int:
        now = self._clock.now()
        models = []
        for record in records:
            model = NotificationModel(
                id=uuid4(),
                recipient_id=_as_uuid(record.recipient_id),
                title=record.title,
                body=record.body,
                work_item_id=_as_uuid(record.work_item_id),
                kind=record.kind,
                created_at=record.created_at or now,
            )
            models.append(model)
            record.id = str(model.id)

        self._session.add_all(models)
        await self._session.flush()
        return len(models)


class SQLAlchemyRoleDirectory(IRoleDirectory):
    """Role lookups against the directory projection."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def members_with_role(self, role: str, organization_id: Optional[str]) -> List[str]:
        stmt = select(DirectoryUserModel.id).where(
            DirectoryUserModel.deleted_at.is_(None),
            func.lower(DirectoryUserModel.role) == role.strip().lower(),
        )
        if organization_id is not None:
            org_uuid = _as_uuid(organization_id)
            if org_uuid is None:
                return []
            stmt = stmt.where(DirectoryUserModel.organization_id == org_uuid)

        stmt = stmt.order_by(DirectoryUserModel.id.asc())
        result = await self._session.execute(stmt)
        return [str(user_id) for user_id in result.scalars().all()]


class SQLAlchemySLAStatistics:
    """Entity counts for the health summary."""

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    async def counts(self) -> Dict[str, int]:
        live = WorkItemModel.deleted_at.is_(None)
        queries = {
            "work_items": select(func.count(WorkItemModel.id)).where(live),
            "tracked_items": select(func.count(WorkItemModel.id)).where(
                live, WorkItemModel.deadline.is_not(None)
            ),
            "paused_items": select(func.count(WorkItemModel.id)).where(
                live, WorkItemModel.paused_at.is_not(None)
            ),
            "active_escalations": select(func.count(WorkItemModel.id)).where(
                live,
                WorkItemModel.escalated_at.is_not(None),
                WorkItemModel.escalation_resolved_at.is_(None),
            ),
            "resolved_escalations": select(func.count(WorkItemModel.id)).where(
                live, WorkItemModel.escalation_resolved_at.is_not(None)
            ),
            "notifications": select(func.count(NotificationModel.id)),
            "dispatch_marks": select(func.count(ReminderDispatchMarkModel.id)),
        }

        counts = {}
        async with self._session_factory() as session:
            for name, stmt in queries.items():
                counts[name] = int(await session.scalar(stmt) or 0)
        return counts
