"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the deadline engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Config watcher and scheduler
"""

from casewatch.sla.infrastructure.models import (
    WorkItemModel,
    WorkItemAssigneeModel,
    DirectoryUserModel,
    DeadlineRuleModel,
    ReminderDispatchMarkModel,
    NotificationModel,
)
from casewatch.sla.infrastructure.repositories import (
    SQLAlchemyWorkItemRepository,
    SQLAlchemyDeadlineRuleRepository,
    SQLAlchemyReminderMarkRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyRoleDirectory,
    SQLAlchemyUnitOfWork,
    SQLAlchemySLAStatistics,
)
from casewatch.sla.infrastructure.external import (
    SLAConfigManager,
    SLAScheduler,
)

__all__ = [
    "WorkItemModel",
    "WorkItemAssigneeModel",
    "DirectoryUserModel",
    "DeadlineRuleModel",
    "ReminderDispatchMarkModel",
    "NotificationModel",
    "SQLAlchemyWorkItemRepository",
    "SQLAlchemyDeadlineRuleRepository",
    "SQLAlchemyReminderMarkRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyRoleDirectory",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemySLAStatistics",
    "SLAConfigManager",
    "SLAScheduler",
]
