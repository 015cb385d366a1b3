"""
Tests for rule resolution: organization rule, then global rule, then default.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from casewatch.config import RuleScope
from casewatch.core import DomainException
from casewatch.infrastructure.database import get_session_context
from casewatch.sla.application import IDeadlineRuleRepository, ISLAConfigProvider, RuleResolver
from casewatch.sla.domain import DeadlineRule, SLAConfig
from casewatch.sla.infrastructure import SQLAlchemyDeadlineRuleRepository

from conftest import NOW, new_id


class InMemoryRuleRepository(IDeadlineRuleRepository):
    def __init__(self, rules: List[DeadlineRule]):
        self.rules = rules
        self.lookups = 0

    async def list_active(self, category: str, organization_id: Optional[str]) -> List[DeadlineRule]:
        self.lookups += 1
        matches = [
            r for r in self.rules
            if r.category == category and r.is_active and r.organization_id == organization_id
        ]
        return sorted(matches, key=lambda r: (r.created_at, r.id), reverse=True)

    async def list(self, category=None, include_inactive=True):
        return list(self.rules)

    async def get_by_id(self, rule_id):
        return next((r for r in self.rules if r.id == rule_id), None)

    async def create(self, rule):
        self.rules.append(rule)
        return rule

    async def update(self, rule):
        return rule

    async def delete(self, rule_id):
        return False


class StaticConfigProvider(ISLAConfigProvider):
    def __init__(self, config: Optional[SLAConfig] = None):
        self.config = config or SLAConfig()

    def get_config(self) -> SLAConfig:
        return self.config


def rule(rule_id, category, days, organization_id=None, role="partner", active=True, created_at=NOW):
    return DeadlineRule(
        id=rule_id,
        category=category,
        organization_id=organization_id,
        reminder_days_before=days,
        escalation_role=role,
        is_active=active,
        created_at=created_at,
    )


@pytest.fixture
def litigation_rules():
    return InMemoryRuleRepository([
        rule("r-a", "litigation", [5, 2], organization_id="A", role="supervisor"),
        rule("r-global", "litigation", [7, 3, 1]),
    ])


@pytest.mark.asyncio
async def test_organization_rule_wins(litigation_rules):
    resolver = RuleResolver(litigation_rules, StaticConfigProvider())

    resolved = await resolver.resolve("litigation", "A")

    assert resolved.reminder_days == (5, 2)
    assert resolved.escalation_role == "supervisor"
    assert resolved.scope == RuleScope.ORGANIZATION
    assert resolved.rule_id == "r-a"


@pytest.mark.asyncio
async def test_other_organization_falls_back_to_global_rule(litigation_rules):
    resolver = RuleResolver(litigation_rules, StaticConfigProvider())

    resolved = await resolver.resolve("litigation", "B")

    assert resolved.reminder_days == (7, 3, 1)
    assert resolved.scope == RuleScope.GLOBAL
    assert resolved.rule_id == "r-global"


@pytest.mark.asyncio
async def test_unknown_category_uses_builtin_default(litigation_rules):
    resolver = RuleResolver(litigation_rules, StaticConfigProvider())

    resolved = await resolver.resolve("contract", "A")

    assert resolved.reminder_days == (7, 3, 1)
    assert resolved.escalation_role == "partner"
    assert resolved.scope == RuleScope.DEFAULT
    assert resolved.rule_id is None


@pytest.mark.asyncio
async def test_default_comes_from_configuration():
    config = SLAConfig(default_reminder_days=[10, 2], default_escalation_role="director")
    resolver = RuleResolver(InMemoryRuleRepository([]), StaticConfigProvider(config))

    resolved = await resolver.resolve("contract", None)

    assert resolved.reminder_days == (10, 2)
    assert resolved.escalation_role == "director"


@pytest.mark.asyncio
async def test_inactive_rules_are_ignored():
    repo = InMemoryRuleRepository([
        rule("r-a", "litigation", [5, 2], organization_id="A", active=False),
        rule("r-global", "litigation", [4]),
    ])
    resolver = RuleResolver(repo, StaticConfigProvider())

    resolved = await resolver.resolve("litigation", "A")

    assert resolved.reminder_days == (4,)
    assert resolved.scope == RuleScope.GLOBAL


@pytest.mark.asyncio
async def test_item_without_organization_only_sees_global_rules(litigation_rules):
    resolver = RuleResolver(litigation_rules, StaticConfigProvider())

    resolved = await resolver.resolve("litigation", None)

    assert resolved.rule_id == "r-global"


@pytest.mark.asyncio
async def test_ambiguous_rules_pick_most_recent_and_warn(caplog):
    repo = InMemoryRuleRepository([
        rule("r-old", "litigation", [9], created_at=NOW - timedelta(days=3)),
        rule("r-new", "litigation", [6], created_at=NOW),
    ])
    resolver = RuleResolver(repo, StaticConfigProvider())

    with caplog.at_level(logging.WARNING):
        resolved = await resolver.resolve("litigation", None)

    assert resolved.rule_id == "r-new"
    assert resolved.reminder_days == (6,)
    assert any("Ambiguous" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_rule_with_no_offsets_uses_default_offsets():
    repo = InMemoryRuleRepository([rule("r-empty", "litigation", [], role="supervisor")])
    resolver = RuleResolver(repo, StaticConfigProvider())

    resolved = await resolver.resolve("litigation", None)

    assert resolved.reminder_days == (7, 3, 1)
    assert resolved.escalation_role == "supervisor"


@pytest.mark.asyncio
async def test_results_are_cached_per_category_and_organization(litigation_rules):
    resolver = RuleResolver(litigation_rules, StaticConfigProvider())

    await resolver.resolve("litigation", "A")
    await resolver.resolve("litigation", "A")

    assert litigation_rules.lookups == 1


def test_rule_offsets_are_normalised():
    normalized = rule("r", "litigation", [1, 3, 3, 7, -2])

    assert normalized.reminder_days_before == [7, 3, 1]


def test_rule_role_defaults_to_partner():
    assert rule("r", "litigation", [1], role="   ").escalation_role == "partner"


@pytest.mark.asyncio
async def test_database_lookup_follows_the_same_order(store):
    org_a = new_id()
    org_b = new_id()
    await store.add_rule("litigation", [5, 2], organization_id=org_a)
    await store.add_rule("litigation", [7, 3, 1])

    async with get_session_context() as session:
        resolver = RuleResolver(SQLAlchemyDeadlineRuleRepository(session), StaticConfigProvider())
        for_a = await resolver.resolve("litigation", org_a)
        for_b = await resolver.resolve("litigation", org_b)
        for_contract = await resolver.resolve("contract", org_a)

    assert for_a.reminder_days == (5, 2)
    assert for_b.reminder_days == (7, 3, 1)
    assert for_b.scope == RuleScope.GLOBAL
    assert for_contract.scope == RuleScope.DEFAULT


@pytest.mark.asyncio
async def test_database_ambiguity_picks_newest(store):
    await store.add_rule("litigation", [9], created_at=NOW - timedelta(days=1))
    newest = await store.add_rule("litigation", [4], created_at=NOW)

    async with get_session_context() as session:
        resolver = RuleResolver(SQLAlchemyDeadlineRuleRepository(session), StaticConfigProvider())
        resolved = await resolver.resolve("litigation", None)

    assert resolved.rule_id == newest


def test_rule_rejects_negative_due_days():
    with pytest.raises(DomainException):
        DeadlineRule(id=None, category="litigation", due_days=-1)
