"""
SLA Application Layer
======================

Application layer for the deadline/escalation engine.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from casewatch.sla.application.dto import (
    DeadlineRuleCreateRequest,
    DeadlineRuleUpdateRequest,
    DeadlineRuleResponse,
    ResolvedRuleResponse,
    ResolveEscalationRequest,
    ResolveEscalationResponse,
    EscalatedItemResponse,
    EscalationSummary,
    EscalationListResponse,
    WorkItemSLAStatusResponse,
)
from casewatch.sla.application.services import (
    RuleResolver,
    RecipientResolver,
    RoleMembersStrategy,
    ResponsiblePartiesStrategy,
    ReminderDispatcher,
    EscalationService,
    ResolutionService,
    DeadlineRuleService,
    EscalationQueryService,
    IWorkItemRepository,
    IDeadlineRuleRepository,
    IReminderMarkRepository,
    INotificationRepository,
    IRoleDirectory,
    IUnitOfWork,
    ISLAConfigProvider,
)

__all__ = [
    # DTOs
    "DeadlineRuleCreateRequest",
    "DeadlineRuleUpdateRequest",
    "DeadlineRuleResponse",
    "ResolvedRuleResponse",
    "ResolveEscalationRequest",
    "ResolveEscalationResponse",
    "EscalatedItemResponse",
    "EscalationSummary",
    "EscalationListResponse",
    "WorkItemSLAStatusResponse",
    # Services
    "RuleResolver",
    "RecipientResolver",
    "RoleMembersStrategy",
    "ResponsiblePartiesStrategy",
    "ReminderDispatcher",
    "EscalationService",
    "ResolutionService",
    "DeadlineRuleService",
    "EscalationQueryService",
    # Repository Interfaces
    "IWorkItemRepository",
    "IDeadlineRuleRepository",
    "IReminderMarkRepository",
    "INotificationRepository",
    "IRoleDirectory",
    "IUnitOfWork",
    "ISLAConfigProvider",
]
