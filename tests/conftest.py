"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database (aiosqlite, StaticPool) created per test
- A pinned clock on the UTC+7 civil calendar
- A small data helper for seeding work items, users and rules
- HTTPX AsyncClient over the ASGI app with its state wired
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, update, func

from casewatch.config import settings
from casewatch.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context,
)
from casewatch.ledger.domain import JobContext
from casewatch.shared.infrastructure.clock import FixedClock
from casewatch.sla.domain import CivilCalendar
from casewatch.sla.infrastructure import (
    SLAConfigManager,
    WorkItemModel,
    WorkItemAssigneeModel,
    DirectoryUserModel,
    DeadlineRuleModel,
    ReminderDispatchMarkModel,
    NotificationModel,
)
from casewatch.sla.services import SLACronJob


CIVIL_TZ = timezone(timedelta(hours=7))

# Monday morning on the civil calendar
NOW = datetime(2024, 1, 8, 9, 0, tzinfo=CIVIL_TZ)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def database():
    """Fresh in-memory schema for each test."""
    init_database("sqlite+aiosqlite://")
    await create_tables()
    yield
    await close_database()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def calendar() -> CivilCalendar:
    return CivilCalendar(7)


@pytest.fixture
def config_manager(tmp_path) -> SLAConfigManager:
    """Defaults only: the YAML file does not exist."""
    manager = SLAConfigManager()
    manager.load(tmp_path / "sla_config.yaml")
    return manager


@pytest.fixture
def sla_job(database, config_manager, clock, calendar) -> SLACronJob:
    return SLACronJob(get_session_context, config_manager, clock, calendar)


@pytest.fixture
def run_sla(sla_job, clock):
    """Run one SLA pass outside the ledger and return its context."""
    async def _run() -> JobContext:
        context = JobContext(job_name="sla", trigger="manual", started_at=clock.now())
        await sla_job(context)
        return context
    return _run


# =============================================================================
# Data Helpers
# =============================================================================

class Store:
    """Seeds and inspects the tables the engine reads and writes."""

    async def add_item(
        self,
        deadline: Optional[datetime],
        title: str = "Appeal filing",
        category: str = "litigation",
        organization_id: Optional[str] = None,
        assignees: Optional[List[str]] = None,
        paused_at: Optional[datetime] = None,
        escalated_at: Optional[datetime] = None,
        escalation_resolved_at: Optional[datetime] = None,
        deleted_at: Optional[datetime] = None,
    ) -> str:
        item_id = uuid.uuid4()
        async with get_session_context() as session:
            session.add(WorkItemModel(
                id=item_id,
                title=title,
                category=category,
                organization_id=uuid.UUID(organization_id) if organization_id else None,
                deadline=deadline,
                paused_at=paused_at,
                escalated_at=escalated_at,
                escalation_resolved_at=escalation_resolved_at,
                deleted_at=deleted_at,
            ))
            await session.flush()
            for user_id in assignees or []:
                session.add(WorkItemAssigneeModel(work_item_id=item_id, user_id=uuid.UUID(user_id)))
        return str(item_id)

    async def update_item(self, item_id: str, **values) -> None:
        async with get_session_context() as session:
            await session.execute(
                update(WorkItemModel).where(WorkItemModel.id == uuid.UUID(item_id)).values(**values)
            )

    async def item(self, item_id: str) -> WorkItemModel:
        async with get_session_context() as session:
            return await session.get(WorkItemModel, uuid.UUID(item_id))

    async def add_user(self, role: str, organization_id: Optional[str] = None, deleted: bool = False) -> str:
        user_id = uuid.uuid4()
        async with get_session_context() as session:
            session.add(DirectoryUserModel(
                id=user_id,
                role=role,
                organization_id=uuid.UUID(organization_id) if organization_id else None,
                deleted_at=NOW if deleted else None,
            ))
        return str(user_id)

    async def add_rule(
        self,
        category: str,
        reminder_days_before: List[int],
        organization_id: Optional[str] = None,
        escalation_role: str = "partner",
        is_active: bool = True,
        created_at: datetime = NOW,
    ) -> str:
        rule_id = uuid.uuid4()
        async with get_session_context() as session:
            session.add(DeadlineRuleModel(
                id=rule_id,
                category=category,
                organization_id=uuid.UUID(organization_id) if organization_id else None,
                reminder_days_before=reminder_days_before,
                escalation_role=escalation_role,
                is_active=is_active,
                created_at=created_at,
                updated_at=created_at,
            ))
        return str(rule_id)

    async def notifications(self, kind: Optional[str] = None, item_id: Optional[str] = None) -> List[NotificationModel]:
        stmt = select(NotificationModel)
        if kind:
            stmt = stmt.where(NotificationModel.kind == kind)
        if item_id:
            stmt = stmt.where(NotificationModel.work_item_id == uuid.UUID(item_id))
        async with get_session_context() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def marks(self, item_id: Optional[str] = None) -> List[ReminderDispatchMarkModel]:
        stmt = select(ReminderDispatchMarkModel)
        if item_id:
            stmt = stmt.where(ReminderDispatchMarkModel.work_item_id == uuid.UUID(item_id))
        async with get_session_context() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def count(self, model) -> int:
        async with get_session_context() as session:
            return int(await session.scalar(select(func.count()).select_from(model)))


@pytest.fixture
def store(database) -> Store:
    return Store()


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def app(database, clock, config_manager, calendar):
    from casewatch.main import app as fastapi_app, configure_app_state

    configure_app_state(fastapi_app, clock=clock, config_manager=config_manager, calendar=calendar)
    return fastapi_app


@pytest.fixture
def ledger(app):
    return app.state.ledger


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def cron_secret(monkeypatch):
    """Configure a trigger secret for the duration of a test."""
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    return "s3cret"


@pytest.fixture(autouse=True)
def open_trigger(monkeypatch):
    """Tests run with the trigger open unless they ask for a secret."""
    monkeypatch.setattr(settings, "cron_secret", None)
