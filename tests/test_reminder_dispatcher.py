"""
Tests for "N days before deadline" reminders.
"""
from datetime import timedelta

import pytest

from casewatch.config import NotificationKind
from casewatch.infrastructure.database import get_session_context
from casewatch.sla.application import ReminderDispatcher, RuleResolver
from casewatch.sla.domain import ReminderDispatchMark
from casewatch.sla.infrastructure import (
    SQLAlchemyDeadlineRuleRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyReminderMarkRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemyWorkItemRepository,
)

from conftest import NOW, new_id


@pytest.mark.asyncio
async def test_reminder_fans_out_to_each_responsible_party(store, run_sla):
    alice, bob = new_id(), new_id()
    item_id = await store.add_item(NOW + timedelta(days=3), title="Appeal", assignees=[alice, bob])

    context = await run_sla()

    notifications = await store.notifications(NotificationKind.SLA_REMINDER)
    assert sorted(str(n.recipient_id) for n in notifications) == sorted([alice, bob])
    assert all(n.title == 'SLA: "Appeal" is due in 3 days' for n in notifications)
    assert all(n.body == "SLA deadline: 2024-01-11" for n in notifications)
    assert all(n.created_at == NOW for n in notifications)

    marks = await store.marks(item_id)
    assert [m.days_before for m in marks] == [3]
    assert context.counters["reminders_sent"] == 1
    assert context.counters["reminder_notifications"] == 2
    assert context.details["reminders"] == [f"{item_id} (3d)"]


@pytest.mark.asyncio
async def test_second_run_on_the_same_day_sends_nothing(store, run_sla, clock):
    item_id = await store.add_item(NOW + timedelta(days=3), assignees=[new_id()])

    await run_sla()
    clock.advance(timedelta(hours=5))
    context = await run_sla()

    assert len(await store.notifications(NotificationKind.SLA_REMINDER)) == 1
    assert len(await store.marks(item_id)) == 1
    assert context.counters["reminders_sent"] == 0
    assert context.counters["duplicates_skipped"] == 1


@pytest.mark.asyncio
async def test_item_without_team_gets_one_broadcast(store, run_sla):
    item_id = await store.add_item(NOW + timedelta(days=1), title="Filing")

    await run_sla()

    notifications = await store.notifications(NotificationKind.SLA_REMINDER)
    assert len(notifications) == 1
    assert notifications[0].recipient_id is None
    assert str(notifications[0].work_item_id) == item_id
    assert notifications[0].title == 'SLA: "Filing" is due in 1 day'


@pytest.mark.asyncio
async def test_paused_item_is_skipped(store, run_sla):
    item_id = await store.add_item(
        NOW + timedelta(days=3), assignees=[new_id()], paused_at=NOW - timedelta(days=1)
    )

    context = await run_sla()

    assert await store.notifications() == []
    assert await store.marks(item_id) == []
    assert context.counters["skipped_paused"] == 1


@pytest.mark.asyncio
async def test_unpaused_item_is_immediately_eligible(store, run_sla):
    item_id = await store.add_item(
        NOW + timedelta(days=3), assignees=[new_id()], paused_at=NOW - timedelta(days=1)
    )
    await run_sla()

    await store.update_item(item_id, paused_at=None)
    await run_sla()

    assert [m.days_before for m in await store.marks(item_id)] == [3]


@pytest.mark.asyncio
async def test_days_not_in_rule_send_nothing(store, run_sla):
    await store.add_item(NOW + timedelta(days=5), assignees=[new_id()])

    await run_sla()

    assert await store.notifications() == []
    assert await store.marks() == []


@pytest.mark.asyncio
async def test_item_due_today_is_not_reminded_at_zero(store, run_sla):
    await store.add_item(NOW + timedelta(hours=2), assignees=[new_id()])

    await run_sla()

    assert await store.marks() == []


@pytest.mark.asyncio
async def test_organization_rule_offsets_apply(store, run_sla):
    org = new_id()
    await store.add_rule("litigation", [5, 2], organization_id=org)
    item_id = await store.add_item(NOW + timedelta(days=5), organization_id=org, assignees=[new_id()])

    await run_sla()

    assert [m.days_before for m in await store.marks(item_id)] == [5]


@pytest.mark.asyncio
async def test_deleted_and_untracked_items_are_ignored(store, run_sla):
    await store.add_item(NOW + timedelta(days=3), deleted_at=NOW - timedelta(days=1))
    await store.add_item(None)

    context = await run_sla()

    assert await store.notifications() == []
    assert context.counters.get("items_scanned", 0) == 0


@pytest.mark.asyncio
async def test_each_offset_fires_once_over_several_days(store, run_sla, clock):
    item_id = await store.add_item(NOW + timedelta(days=7), assignees=[new_id()])

    for _ in range(8):
        await run_sla()
        clock.advance(timedelta(days=1))

    assert sorted(m.days_before for m in await store.marks(item_id)) == [1, 3, 7]
    assert len(await store.notifications(NotificationKind.SLA_REMINDER)) == 3


@pytest.mark.asyncio
async def test_mark_insert_is_insert_if_absent(store):
    item_id = await store.add_item(NOW + timedelta(days=3))

    async with get_session_context() as session:
        marks = SQLAlchemyReminderMarkRepository(session)
        first = await marks.try_insert(ReminderDispatchMark(work_item_id=item_id, days_before=3, sent_at=NOW))
        second = await marks.try_insert(ReminderDispatchMark(work_item_id=item_id, days_before=3, sent_at=NOW))
        exists = await marks.exists(item_id, 3)

    assert first is True
    assert second is False
    assert exists is True
    assert len(await store.marks(item_id)) == 1


@pytest.mark.asyncio
async def test_mark_is_not_inserted_for_a_paused_item(store):
    item_id = await store.add_item(NOW + timedelta(days=3), paused_at=NOW)

    async with get_session_context() as session:
        inserted = await SQLAlchemyReminderMarkRepository(session).try_insert(
            ReminderDispatchMark(work_item_id=item_id, days_before=3, sent_at=NOW)
        )

    assert inserted is False
    assert await store.marks(item_id) == []


@pytest.mark.asyncio
async def test_item_paused_after_the_scan_loaded_it_gets_no_reminder(store, clock, calendar, config_manager):
    item_id = await store.add_item(NOW + timedelta(days=3), assignees=[new_id()])
    counters = {}

    async with get_session_context() as session:
        work_items = SQLAlchemyWorkItemRepository(session)
        dispatcher = ReminderDispatcher(
            work_items=work_items,
            rules=RuleResolver(SQLAlchemyDeadlineRuleRepository(session), config_manager),
            marks=SQLAlchemyReminderMarkRepository(session),
            notifications=SQLAlchemyNotificationRepository(session),
            unit_of_work=SQLAlchemyUnitOfWork(session),
            clock=clock,
            calendar=calendar,
        )
        [snapshot] = await work_items.list_tracked()
        await store.update_item(item_id, paused_at=NOW)

        marked = await dispatcher.dispatch_item(snapshot, NOW, counters)

    assert snapshot.is_paused is False
    assert marked == []
    assert counters["skipped_paused"] == 1
    assert await store.marks(item_id) == []
    assert await store.notifications() == []
