"""
Ticket Controllers (API Routes)
================================

FastAPI routes for the ticket lifecycle and SLA sweep.

Controllers are thin - they delegate to ``TicketLifecycleService``. Typed
application errors are turned into HTTP responses by the handlers in
``supportdesk.shared.api.middleware``.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.config import Priority, TicketStatus, settings
from supportdesk.infrastructure.database import get_session
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.sla.application import (
    AssignmentBalancer,
    AssignTicketDTO,
    BulkOperationRequest,
    BulkOperationResult,
    CommentCreateDTO,
    CommentResponse,
    ISLAPolicyProvider,
    SideEffectDispatcher,
    SLACheckSummary,
    SLAEvaluator,
    TicketCreateDTO,
    TicketFilterDTO,
    TicketLifecycleService,
    TicketListResponse,
    TicketResponse,
    TicketStatsResponse,
    TicketUpdateDTO,
)
from supportdesk.sla.domain import Clock
from supportdesk.sla.infrastructure import (
    SQLAlchemyAgentDirectory,
    SQLAlchemyCommentRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Dependencies ==========

def build_ticket_service(
    session: AsyncSession,
    policy_provider: ISLAPolicyProvider,
    dispatcher: SideEffectDispatcher,
    clock: Clock,
) -> TicketLifecycleService:
    """
    Wire the lifecycle service onto one database session.

    Side-effect events reach ``dispatcher`` only after the session commits.
    """
    ticket_repo = SQLAlchemyTicketRepository(session)
    agent_directory = SQLAlchemyAgentDirectory(session)
    return TicketLifecycleService(
        ticket_repository=ticket_repo,
        comment_repository=SQLAlchemyCommentRepository(session),
        agent_directory=agent_directory,
        balancer=AssignmentBalancer(agent_directory, ticket_repo, settings.agent_roles),
        evaluator=SLAEvaluator(ticket_repo, clock),
        policy_provider=policy_provider,
        unit_of_work=SQLAlchemyUnitOfWork(session, dispatcher),
        clock=clock,
        default_priority=settings.default_priority,
        sweep_page_size=settings.sla_sweep_page_size,
    )


async def get_ticket_service(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> TicketLifecycleService:
    """Get ticket lifecycle service built from app state."""
    state = request.app.state
    return build_ticket_service(session, state.policy_provider, state.dispatcher, state.clock)


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    description="""
    Create a ticket, stamp its SLA budgets from the policy table and
    auto-assign it to the least-loaded agent.

    **Priority Levels**: `LOW`, `MEDIUM` (default), `HIGH`, `CRITICAL`
    """,
)
async def create_ticket(
    payload: TicketCreateDTO,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    ticket = await service.create(payload)
    return TicketResponse.model_validate(ticket)


@router.get("", response_model=TicketListResponse, summary="List tickets")
async def list_tickets(
    ticket_status: Optional[TicketStatus] = Query(None, alias="status"),
    priority: Optional[Priority] = Query(None),
    assigned_agent_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    customer_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    sla_breach: Optional[bool] = Query(None),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    filters = TicketFilterDTO(
        status=ticket_status,
        priority=priority,
        assigned_agent_id=assigned_agent_id,
        user_id=user_id,
        customer_id=customer_id,
        category=category,
        sla_breach=sla_breach,
        created_after=created_after,
        created_before=created_before,
        search=search,
    )
    tickets, total = await service.list_tickets(filters.to_filters(), page=page, limit=limit)
    return TicketListResponse(
        tickets=[TicketResponse.model_validate(t) for t in tickets],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/stats", response_model=TicketStatsResponse, summary="Ticket statistics")
async def ticket_stats(
    user_id: Optional[str] = Query(None),
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return await service.ticket_stats(user_id)


@router.post(
    "/bulk",
    response_model=BulkOperationResult,
    summary="Apply one operation to many tickets",
    description="""
    Applies `assign`, `close`, `update_priority` or `add_tag` to every ticket
    independently. Failures are counted per ticket and never stop the rest.
    """,
)
async def bulk_operation(
    payload: BulkOperationRequest,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return await service.bulk_operation(payload)


@router.post("/sla-check", response_model=SLACheckSummary, summary="Run the SLA sweep now")
async def run_sla_check(
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return await service.run_sla_check()


@router.get("/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: str,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return TicketResponse.model_validate(await service.get_ticket(ticket_id))


@router.patch("/{ticket_id}", response_model=TicketResponse, summary="Update a ticket")
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateDTO,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return TicketResponse.model_validate(await service.update(ticket_id, payload))


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a ticket",
)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateDTO,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    comment = await service.add_comment(
        ticket_id, payload.author_id, payload.content, payload.is_internal
    )
    return CommentResponse.model_validate(comment)


@router.post("/{ticket_id}/assign", response_model=TicketResponse, summary="Assign a ticket")
async def assign_ticket(
    ticket_id: str,
    payload: AssignTicketDTO,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return TicketResponse.model_validate(await service.assign(ticket_id, payload.agent_id))


@router.post("/{ticket_id}/close", response_model=TicketResponse, summary="Close a ticket")
async def close_ticket(
    ticket_id: str,
    service: TicketLifecycleService = Depends(get_ticket_service)
):
    return TicketResponse.model_validate(await service.close(ticket_id))


# Export router for inclusion in main app
tickets_router = router
