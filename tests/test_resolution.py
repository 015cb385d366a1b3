"""
Tests for the resolution workflow and the escalation listing.
"""
from datetime import timedelta

import pytest

from casewatch.infrastructure.database import get_session_context
from casewatch.sla.application import EscalationQueryService, ResolutionService, RuleResolver
from casewatch.sla.domain import ResolutionOutcome
from casewatch.sla.infrastructure import (
    SQLAlchemyDeadlineRuleRepository,
    SQLAlchemyReminderMarkRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemyWorkItemRepository,
)

from conftest import NOW, new_id


@pytest.fixture
def resolve(database, clock):
    async def _resolve(item_id, note=None):
        async with get_session_context() as session:
            service = ResolutionService(
                SQLAlchemyWorkItemRepository(session), SQLAlchemyUnitOfWork(session), clock
            )
            return await service.resolve(item_id, note)
    return _resolve


@pytest.mark.asyncio
async def test_resolving_an_escalation_records_time_and_note(store, resolve, clock):
    item_id = await store.add_item(NOW - timedelta(days=2), escalated_at=NOW - timedelta(days=1))
    clock.advance(timedelta(hours=3))

    outcome = await resolve(item_id, "  Client granted extension  ")

    item = await store.item(item_id)
    assert outcome == ResolutionOutcome.RESOLVED
    assert item.escalation_resolved_at == NOW + timedelta(hours=3)
    assert item.escalation_note == "Client granted extension"
    assert item.escalated_at == NOW - timedelta(days=1)


@pytest.mark.asyncio
async def test_second_resolution_is_rejected_and_changes_nothing(store, resolve, clock):
    item_id = await store.add_item(NOW - timedelta(days=2), escalated_at=NOW - timedelta(days=1))
    await resolve(item_id, "first")
    clock.advance(timedelta(hours=1))

    outcome = await resolve(item_id, "second")

    item = await store.item(item_id)
    assert outcome == ResolutionOutcome.ALREADY_RESOLVED
    assert item.escalation_note == "first"
    assert item.escalation_resolved_at == NOW


@pytest.mark.asyncio
async def test_item_that_is_not_escalated_is_not_found(store, resolve):
    item_id = await store.add_item(NOW + timedelta(days=2))

    outcome = await resolve(item_id, "note")

    item = await store.item(item_id)
    assert outcome == ResolutionOutcome.NOT_FOUND
    assert item.escalation_resolved_at is None
    assert item.escalation_note is None


@pytest.mark.asyncio
async def test_unknown_or_malformed_ids_are_not_found(store, resolve):
    assert await resolve(new_id()) == ResolutionOutcome.NOT_FOUND
    assert await resolve("not-a-uuid") == ResolutionOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_deleted_item_is_not_found(store, resolve):
    item_id = await store.add_item(
        NOW - timedelta(days=2), escalated_at=NOW - timedelta(days=1), deleted_at=NOW
    )

    assert await resolve(item_id) == ResolutionOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_blank_note_is_stored_as_absent(store, resolve):
    item_id = await store.add_item(NOW - timedelta(days=2), escalated_at=NOW - timedelta(days=1))

    await resolve(item_id, "   ")

    assert (await store.item(item_id)).escalation_note is None


@pytest.mark.asyncio
async def test_resolved_items_leave_the_active_list_but_stay_queryable(store, resolve, clock, calendar, config_manager):
    open_id = await store.add_item(NOW - timedelta(days=3), escalated_at=NOW - timedelta(days=2))
    closed_id = await store.add_item(NOW - timedelta(days=2), escalated_at=NOW - timedelta(days=1))
    await store.add_item(NOW + timedelta(days=2))
    await resolve(closed_id)

    async with get_session_context() as session:
        service = EscalationQueryService(
            work_items=SQLAlchemyWorkItemRepository(session),
            marks=SQLAlchemyReminderMarkRepository(session),
            rules=RuleResolver(SQLAlchemyDeadlineRuleRepository(session), config_manager),
            clock=clock,
            calendar=calendar,
        )
        active, summary = await service.list_escalations()
        everything, summary_all = await service.list_escalations(include_resolved=True)

    assert [item.id for item in active] == [open_id]
    assert [item.id for item in everything] == [closed_id, open_id]
    assert summary == {"total": 2, "unresolved": 1, "resolved": 1}
    assert summary_all == summary
