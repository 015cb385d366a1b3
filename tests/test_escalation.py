"""
Tests for the Tracking -> Escalated transition and its notification tiers.
"""
from datetime import timedelta

import pytest

from casewatch.config import NotificationKind
from casewatch.infrastructure.database import get_session_context
from casewatch.sla.infrastructure import SQLAlchemyWorkItemRepository

from conftest import NOW, new_id


@pytest.mark.asyncio
async def test_overdue_item_is_escalated_to_role_members_of_its_organization(store, run_sla):
    org, other_org = new_id(), new_id()
    partner = await store.add_user("Partner", organization_id=org)
    await store.add_user("partner", organization_id=other_org)
    await store.add_user("partner", organization_id=org, deleted=True)
    await store.add_user("associate", organization_id=org)
    item_id = await store.add_item(
        NOW - timedelta(hours=1), title="Appeal", organization_id=org, assignees=[new_id()]
    )

    context = await run_sla()

    item = await store.item(item_id)
    assert item.escalated_at == NOW
    notifications = await store.notifications(NotificationKind.SLA_ESCALATION)
    assert [str(n.recipient_id) for n in notifications] == [partner]
    assert notifications[0].title == '[ESCALATION] SLA missed: "Appeal"'
    assert item_id in notifications[0].body
    assert context.counters["escalations_raised"] == 1
    assert context.counters["escalation_notifications"] == 1
    assert context.details["escalations"] == [item_id]


@pytest.mark.asyncio
async def test_escalation_is_idempotent_across_runs(store, run_sla, clock):
    item_id = await store.add_item(NOW - timedelta(days=2), assignees=[new_id()])

    await run_sla()
    first_escalated_at = (await store.item(item_id)).escalated_at

    clock.advance(timedelta(days=1))
    context = await run_sla()

    assert (await store.item(item_id)).escalated_at == first_escalated_at
    assert len(await store.notifications(NotificationKind.SLA_ESCALATION)) == 1
    assert context.counters["escalations_raised"] == 0


@pytest.mark.asyncio
async def test_falls_back_to_responsible_parties(store, run_sla):
    alice, bob = new_id(), new_id()
    await store.add_item(NOW - timedelta(hours=1), organization_id=new_id(), assignees=[alice, bob])

    await run_sla()

    notifications = await store.notifications(NotificationKind.SLA_ESCALATION)
    assert sorted(str(n.recipient_id) for n in notifications) == sorted([alice, bob])


@pytest.mark.asyncio
async def test_falls_back_to_broadcast(store, run_sla):
    item_id = await store.add_item(NOW - timedelta(hours=1), organization_id=new_id())

    await run_sla()

    notifications = await store.notifications(NotificationKind.SLA_ESCALATION)
    assert len(notifications) == 1
    assert notifications[0].recipient_id is None
    assert str(notifications[0].work_item_id) == item_id


@pytest.mark.asyncio
async def test_rule_escalation_role_is_used(store, run_sla):
    org = new_id()
    await store.add_rule("litigation", [7, 3, 1], organization_id=org, escalation_role="supervisor")
    await store.add_user("partner", organization_id=org)
    supervisor = await store.add_user("Supervisor", organization_id=org)
    await store.add_item(NOW - timedelta(hours=1), organization_id=org)

    await run_sla()

    notifications = await store.notifications(NotificationKind.SLA_ESCALATION)
    assert [str(n.recipient_id) for n in notifications] == [supervisor]


@pytest.mark.asyncio
async def test_paused_overdue_item_is_never_escalated(store, run_sla, clock):
    item_id = await store.add_item(
        NOW - timedelta(days=30), assignees=[new_id()], paused_at=NOW - timedelta(days=31)
    )

    for _ in range(3):
        await run_sla()
        clock.advance(timedelta(days=1))

    assert (await store.item(item_id)).escalated_at is None
    assert await store.notifications() == []


@pytest.mark.asyncio
async def test_unpaused_item_escalates_on_original_deadline(store, run_sla):
    item_id = await store.add_item(
        NOW - timedelta(days=10), assignees=[new_id()], paused_at=NOW - timedelta(days=11)
    )
    await run_sla()

    await store.update_item(item_id, paused_at=None)
    await run_sla()

    assert (await store.item(item_id)).escalated_at == NOW


@pytest.mark.asyncio
async def test_future_deadline_is_not_escalated(store, run_sla):
    item_id = await store.add_item(NOW + timedelta(minutes=1))

    await run_sla()

    assert (await store.item(item_id)).escalated_at is None


@pytest.mark.asyncio
async def test_overdue_item_gets_no_reminder(store, run_sla):
    item_id = await store.add_item(NOW - timedelta(days=1), assignees=[new_id()])

    await run_sla()

    assert await store.marks(item_id) == []
    assert await store.notifications(NotificationKind.SLA_REMINDER) == []


@pytest.mark.asyncio
async def test_conditional_write_only_succeeds_once(store):
    item_id = await store.add_item(NOW - timedelta(hours=1))

    async with get_session_context() as session:
        work_items = SQLAlchemyWorkItemRepository(session)
        first = await work_items.mark_escalated(item_id, NOW)
        second = await work_items.mark_escalated(item_id, NOW + timedelta(hours=1))

    assert first is True
    assert second is False
    assert (await store.item(item_id)).escalated_at == NOW


@pytest.mark.asyncio
async def test_conditional_write_refuses_paused_item(store):
    item_id = await store.add_item(NOW - timedelta(hours=1), paused_at=NOW - timedelta(hours=2))

    async with get_session_context() as session:
        escalated = await SQLAlchemyWorkItemRepository(session).mark_escalated(item_id, NOW)

    assert escalated is False
    assert (await store.item(item_id)).escalated_at is None
