"""
SLA Application Layer
======================

Application layer for the SLA & escalation engine.

Contains:
- Services: balancer, evaluator and the ticket lifecycle controller
- Events: the outbound side-effect channel
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from supportdesk.sla.application.dto import (
    TicketCreateDTO,
    TicketUpdateDTO,
    CommentCreateDTO,
    AssignTicketDTO,
    BulkOperationPayload,
    BulkOperationRequest,
    BulkOperationResult,
    TicketFilterDTO,
    TicketResponse,
    CommentResponse,
    TicketListResponse,
    TicketStatsResponse,
    SLACheckSummary,
)
from supportdesk.sla.application.events import (
    SideEffectDispatcher,
    SentimentAnalysisRequested,
    EscalationAlert,
)
from supportdesk.sla.application.services import (
    AssignmentBalancer,
    SLAEvaluator,
    TicketLifecycleService,
    ITicketRepository,
    ICommentRepository,
    IAgentDirectory,
    ISLAPolicyProvider,
    IUnitOfWork,
)

__all__ = [
    # DTOs
    "TicketCreateDTO",
    "TicketUpdateDTO",
    "CommentCreateDTO",
    "AssignTicketDTO",
    "BulkOperationPayload",
    "BulkOperationRequest",
    "BulkOperationResult",
    "TicketFilterDTO",
    "TicketResponse",
    "CommentResponse",
    "TicketListResponse",
    "TicketStatsResponse",
    "SLACheckSummary",
    # Events
    "SideEffectDispatcher",
    "SentimentAnalysisRequested",
    "EscalationAlert",
    # Services
    "AssignmentBalancer",
    "SLAEvaluator",
    "TicketLifecycleService",
    # Repository Interfaces
    "ITicketRepository",
    "ICommentRepository",
    "IAgentDirectory",
    "ISLAPolicyProvider",
    "IUnitOfWork",
]
