"""
SLA Services
============

The bundled "sla" job: reminder scan followed by the escalation scan.

This file wires the application services to SQLAlchemy repositories on a
fresh session per run so the job can be registered with the execution
ledger, the scheduler and the cron trigger alike.
"""

from typing import AsyncContextManager, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from casewatch.ledger.domain import JobContext
from casewatch.shared.infrastructure.clock import Clock
from casewatch.shared.infrastructure.logging import get_logger, log_latency
from casewatch.sla.application import (
    ISLAConfigProvider, RuleResolver, ReminderDispatcher, EscalationService,
)
from casewatch.sla.domain import CivilCalendar
from casewatch.sla.infrastructure import (
    SQLAlchemyWorkItemRepository,
    SQLAlchemyDeadlineRuleRepository,
    SQLAlchemyReminderMarkRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyRoleDirectory,
    SQLAlchemyUnitOfWork,
)

logger = get_logger(__name__)


class SLACronJob:
    """
    Runs one SLA pass: reminders first, then escalations.

    Counters and details are written straight into the ledger's JobContext,
    so a failure mid-scan still reports what completed.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]],
        config_provider: ISLAConfigProvider,
        clock: Clock,
        calendar: CivilCalendar
    ):
        self._session_factory = session_factory
        self._config_provider = config_provider
        self._clock = clock
        self._calendar = calendar

    async def __call__(self, context: JobContext) -> None:
        async with self._session_factory() as session:
            work_items = SQLAlchemyWorkItemRepository(session)
            notifications = SQLAlchemyNotificationRepository(session, self._clock)
            unit_of_work = SQLAlchemyUnitOfWork(session)

            # One resolver per run: rules are immutable during a scan
            rules = RuleResolver(SQLAlchemyDeadlineRuleRepository(session, self._clock), self._config_provider)

            dispatcher = ReminderDispatcher(
                work_items=work_items,
                rules=rules,
                marks=SQLAlchemyReminderMarkRepository(session),
                notifications=notifications,
                unit_of_work=unit_of_work,
                clock=self._clock,
                calendar=self._calendar,
            )
            escalation = EscalationService(
                work_items=work_items,
                rules=rules,
                directory=SQLAlchemyRoleDirectory(session),
                notifications=notifications,
                unit_of_work=unit_of_work,
                clock=self._clock,
                calendar=self._calendar,
            )

            context.counters.setdefault("reminders_sent", 0)
            context.counters.setdefault("escalations_raised", 0)

            with log_latency(logger, "sla_reminder_scan", job_name=context.job_name):
                await dispatcher.run(context.counters, context.details)

            with log_latency(logger, "sla_escalation_scan", job_name=context.job_name):
                await escalation.run(context.counters, context.details)
