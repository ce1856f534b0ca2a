"""
SLA Domain Entities
====================

Pure Python domain entities for ticket SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from supportdesk.config import Priority, TicketStatus


def dedupe_tags(tags: List[str]) -> List[str]:
    """Drop duplicate tags, keeping first-seen order."""
    seen = set()
    result = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


@dataclass
class Ticket:
    """
    Ticket entity representing a support ticket.

    ``sla_response_time`` and ``sla_resolve_time`` are minutes captured from
    the policy table when the ticket is created. They are not recomputed
    when the priority changes later.
    """

    # Core attributes
    id: str
    user_id: str
    subject: str
    priority: Priority
    status: TicketStatus

    # Timestamps
    created_at: datetime
    updated_at: datetime

    # SLA budget (minutes)
    sla_response_time: Optional[int] = None
    sla_resolve_time: Optional[int] = None
    sla_breach: bool = False

    # Optional attributes
    customer_id: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    source: str = "MANUAL"
    tags: List[str] = field(default_factory=list)
    assigned_agent_id: Optional[str] = None

    # Milestones
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        self.tags = dedupe_tags(self.tags)

    @property
    def response_deadline(self) -> Optional[datetime]:
        if self.sla_response_time is None:
            return None
        return self.created_at + timedelta(minutes=self.sla_response_time)

    @property
    def resolve_deadline(self) -> Optional[datetime]:
        if self.sla_resolve_time is None:
            return None
        return self.created_at + timedelta(minutes=self.sla_resolve_time)

    def elapsed_minutes(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 60

    def milestone_stamps(self, new_status: Optional[TicketStatus], now: datetime) -> Dict[str, datetime]:
        """
        Timestamps to stamp for a transition into ``new_status``.

        ``resolved_at`` and ``closed_at`` are one-way latches: once set they
        are never overwritten or cleared.
        """
        stamps: Dict[str, datetime] = {}
        if new_status == TicketStatus.RESOLVED and self.resolved_at is None:
            stamps["resolved_at"] = now
        if new_status == TicketStatus.CLOSED and self.closed_at is None:
            stamps["closed_at"] = now
        return stamps


@dataclass
class Comment:
    """A message posted on a ticket. Internal notes are hidden from the requester."""

    id: str
    ticket_id: str
    author_id: str
    content: str
    is_internal: bool
    created_at: datetime


@dataclass
class Agent:
    """Read-only view of a user from the agent directory."""

    id: str
    name: str
    role: str
    email: Optional[str] = None


@dataclass(frozen=True)
class AgentWorkload:
    """Snapshot of an agent's open + in-progress ticket count."""

    agent_id: str
    open_tickets: int


@dataclass
class BreachEvaluation:
    """
    Result of evaluating one ticket against its SLA budget.

    ``recorded`` is True only for the caller whose conditional write flipped
    the stored breach flag. ``escalated_to`` is the priority that same write
    set, or None when the ticket was already at the ceiling.
    """

    ticket_id: str
    elapsed_minutes: float
    response_breached: bool
    resolve_breached: bool
    previously_breached: bool
    recorded: bool = False
    escalated_to: Optional[Priority] = None

    @property
    def breached(self) -> bool:
        return self.response_breached or self.resolve_breached

    @property
    def is_transition(self) -> bool:
        return self.breached != self.previously_breached

    @property
    def entered_breach(self) -> bool:
        return self.recorded and self.breached

    @property
    def cleared_breach(self) -> bool:
        return self.recorded and not self.breached
