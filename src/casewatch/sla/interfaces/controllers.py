"""
SLA Controllers (API Routes)
=============================

FastAPI routes for deadline rules, escalations and per-item SLA status.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from casewatch.core import DomainException, ResourceNotFoundException, ValidationException
from casewatch.infrastructure.database import get_session
from casewatch.shared.infrastructure.clock import Clock
from casewatch.shared.infrastructure.logging import get_logger
from casewatch.sla.application import (
    DeadlineRuleService, EscalationQueryService, ResolutionService, RuleResolver,
    ISLAConfigProvider,
    DeadlineRuleCreateRequest, DeadlineRuleUpdateRequest, DeadlineRuleResponse,
    ResolvedRuleResponse, ResolveEscalationRequest, ResolveEscalationResponse,
    EscalatedItemResponse, EscalationSummary, EscalationListResponse,
    WorkItemSLAStatusResponse,
)
from casewatch.sla.domain import CivilCalendar, ResolutionOutcome
from casewatch.sla.infrastructure import (
    SQLAlchemyWorkItemRepository,
    SQLAlchemyDeadlineRuleRepository,
    SQLAlchemyReminderMarkRepository,
    SQLAlchemyUnitOfWork,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])

# Fields that may be explicitly cleared by a PATCH
_NULLABLE_RULE_FIELDS = {"organization_id", "due_days"}


# ========== Example payloads for Swagger ==========

RULE_CREATE_EXAMPLE = {
    "category": "litigation",
    "organization_id": None,
    "due_days": 30,
    "reminder_days_before": [7, 3, 1],
    "escalation_role": "partner",
    "is_active": True
}

ESCALATION_LIST_EXAMPLE = {
    "data": [
        {
            "id": "4a0f5d2e-7c55-4c1e-9d1a-2f8b7e0c9a11",
            "title": "Appeal filing - Case 2024/017",
            "category": "litigation",
            "organization_id": "0c5c3a1e-2b8d-4f8e-8a43-6f1d5b9e2c70",
            "deadline": "2024-01-10T03:00:00Z",
            "escalated_at": "2024-01-11T01:00:00Z",
            "escalation_resolved_at": None,
            "escalation_note": None,
            "state": "escalated",
            "responsible_party_ids": []
        }
    ],
    "summary": {"total": 3, "unresolved": 1, "resolved": 2}
}


# ========== Dependencies ==========

def get_clock(request: Request) -> Clock:
    """Clock chosen at startup (fixed in tests)."""
    return request.app.state.clock


def get_calendar(request: Request) -> CivilCalendar:
    return request.app.state.calendar


def get_config_provider(request: Request) -> ISLAConfigProvider:
    return request.app.state.sla_config


async def get_rule_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    clock: Clock = Depends(get_clock)
) -> DeadlineRuleService:
    """Get deadline rule service instance."""
    return DeadlineRuleService(
        SQLAlchemyDeadlineRuleRepository(session, clock),
        config_provider,
        SQLAlchemyUnitOfWork(session),
    )


async def get_query_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    clock: Clock = Depends(get_clock),
    calendar: CivilCalendar = Depends(get_calendar)
) -> EscalationQueryService:
    """Get escalation query service instance."""
    return EscalationQueryService(
        work_items=SQLAlchemyWorkItemRepository(session),
        marks=SQLAlchemyReminderMarkRepository(session),
        rules=RuleResolver(SQLAlchemyDeadlineRuleRepository(session, clock), config_provider),
        clock=clock,
        calendar=calendar,
    )


# ========== Deadline Rules ==========

@router.get(
    "/rules",
    response_model=List[DeadlineRuleResponse],
    summary="List deadline rules",
)
async def list_rules(
    category: Optional[str] = Query(None, description="Only rules for this category"),
    include_inactive: bool = Query(True, description="Include inactive rules"),
    service: DeadlineRuleService = Depends(get_rule_service)
):
    rules = await service.list_rules(category=category, include_inactive=include_inactive)
    return [DeadlineRuleResponse.from_domain(r) for r in rules]


@router.post(
    "/rules",
    response_model=DeadlineRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a deadline rule",
    description="""
    Creates a rule for a work item category, either for one organization or
    globally (`organization_id: null`).

    Reminder offsets must be positive integers; duplicates collapse and the
    list is stored largest first. An empty list falls back to the configured
    defaults.
    """,
    responses={422: {"description": "Invalid payload"}}
)
async def create_rule(
    request: DeadlineRuleCreateRequest = Body(..., examples=[RULE_CREATE_EXAMPLE]),
    service: DeadlineRuleService = Depends(get_rule_service)
):
    try:
        rule = await service.create_rule(request.to_domain())
    except (ValidationException, DomainException) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.message
        )
    return DeadlineRuleResponse.from_domain(rule)


@router.get(
    "/rules/resolve",
    response_model=ResolvedRuleResponse,
    summary="Preview rule resolution",
    description="""
    Shows which offsets and escalation role apply to a (category,
    organization) pair, and whether they come from an organization rule,
    a global rule or the configured defaults.
    """
)
async def preview_rule(
    category: str = Query(..., description="Work item category"),
    organization_id: Optional[str] = Query(None, description="Owning organization"),
    service: DeadlineRuleService = Depends(get_rule_service)
):
    resolved = await service.preview(category, organization_id)
    return ResolvedRuleResponse.from_domain(resolved)


@router.patch(
    "/rules/{rule_id}",
    response_model=DeadlineRuleResponse,
    summary="Update a deadline rule",
    responses={404: {"description": "Rule not found"}}
)
async def update_rule(
    rule_id: str,
    request: DeadlineRuleUpdateRequest,
    service: DeadlineRuleService = Depends(get_rule_service)
):
    changes = {
        name: value
        for name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or name in _NULLABLE_RULE_FIELDS
    }

    try:
        rule = await service.update_rule(rule_id, changes)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (ValidationException, DomainException) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.message
        )
    return DeadlineRuleResponse.from_domain(rule)


@router.delete(
    "/rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a deadline rule",
    responses={404: {"description": "Rule not found"}}
)
async def delete_rule(
    rule_id: str,
    service: DeadlineRuleService = Depends(get_rule_service)
):
    try:
        await service.delete_rule(rule_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Escalations ==========

@router.get(
    "/escalations",
    response_model=EscalationListResponse,
    summary="List escalated work items",
    description="""
    Escalated items, most recent escalation first.

    Resolved escalations are hidden unless `include_resolved=true`; the
    summary always counts both.
    """,
    responses={
        200: {
            "description": "Escalations and summary",
            "content": {"application/json": {"example": ESCALATION_LIST_EXAMPLE}}
        }
    }
)
async def list_escalations(
    include_resolved: bool = Query(False, description="Include resolved escalations"),
    escalated_from: Optional[datetime] = Query(None, description="Escalated at or after"),
    escalated_to: Optional[datetime] = Query(None, description="Escalated at or before"),
    organization_id: Optional[str] = Query(None, description="Owning organization"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    service: EscalationQueryService = Depends(get_query_service)
):
    items, summary = await service.list_escalations(
        include_resolved=include_resolved,
        escalated_from=escalated_from,
        escalated_to=escalated_to,
        organization_id=organization_id,
        limit=limit,
        offset=offset,
    )
    return EscalationListResponse(
        data=[EscalatedItemResponse.from_domain(item) for item in items],
        summary=EscalationSummary(**summary),
    )


@router.post(
    "/escalations/{item_id}/resolve",
    response_model=ResolveEscalationResponse,
    summary="Resolve an escalation",
    description="""
    Closes the escalation on a work item and stores an optional note.

    - 200: resolved now
    - 404: unknown item, or the item is not escalated
    - 409: the escalation was already resolved (the note is not changed)
    """,
    responses={
        404: {"description": "No escalation to resolve"},
        409: {"description": "Escalation already resolved"}
    }
)
async def resolve_escalation(
    item_id: str,
    request: Optional[ResolveEscalationRequest] = Body(None),
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock)
):
    work_items = SQLAlchemyWorkItemRepository(session)
    service = ResolutionService(work_items, SQLAlchemyUnitOfWork(session), clock)

    outcome = await service.resolve(item_id, request.note if request else None)

    if outcome == ResolutionOutcome.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No escalation found for work item {item_id}"
        )
    if outcome == ResolutionOutcome.ALREADY_RESOLVED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Escalation for work item {item_id} is already resolved"
        )

    item = await work_items.get_by_id(item_id)
    return ResolveEscalationResponse(
        item_id=item_id,
        outcome=outcome,
        escalation_resolved_at=item.escalation_resolved_at if item else None,
        escalation_note=item.escalation_note if item else None,
    )


# ========== Work Items ==========

@router.get(
    "/items/{item_id}/status",
    response_model=WorkItemSLAStatusResponse,
    summary="Get work item SLA status",
    responses={404: {"description": "Work item not found"}}
)
async def get_item_status(
    item_id: str,
    service: EscalationQueryService = Depends(get_query_service)
):
    result = await service.item_status(item_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Work item {item_id} not found"
        )

    item = result["item"]
    rule = result["rule"]
    return WorkItemSLAStatusResponse(
        item_id=item.id,
        state=result["state"],
        paused=result["paused"],
        deadline=item.deadline,
        days_left=result["days_left"],
        reminder_days=list(rule.reminder_days),
        dispatched_days=result["dispatched_days"],
        escalation_role=rule.escalation_role,
        rule_scope=rule.scope,
        escalated_at=item.escalated_at,
        escalation_resolved_at=item.escalation_resolved_at,
    )


# Export router for inclusion in main app
sla_router = router
