"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access, unit of work and policy provider
- External: Slack alerts, sentiment trigger, sweep scheduler
"""

from supportdesk.sla.infrastructure.models import TicketModel, CommentModel, AgentModel
from supportdesk.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyCommentRepository,
    SQLAlchemyAgentDirectory,
    SQLAlchemyUnitOfWork,
    YAMLPolicyProvider,
)
from supportdesk.sla.infrastructure.external import (
    CircuitBreaker,
    SlackAlertNotifier,
    HttpSentimentAnalyzer,
    SLAScheduler,
)

__all__ = [
    "TicketModel",
    "CommentModel",
    "AgentModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyCommentRepository",
    "SQLAlchemyAgentDirectory",
    "SQLAlchemyUnitOfWork",
    "YAMLPolicyProvider",
    "CircuitBreaker",
    "SlackAlertNotifier",
    "HttpSentimentAnalyzer",
    "SLAScheduler",
]
