"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from supportdesk.config import Priority, AlertSeverity, PRIORITY_ORDER
from supportdesk.sla.domain.entities import Ticket, BreachEvaluation


class SLAPolicyEntry(BaseModel):
    """Response and resolve budgets, in minutes, for one priority."""

    model_config = ConfigDict(frozen=True)

    response_minutes: int = Field(gt=0, description="Minutes until a first reply is due")
    resolve_minutes: int = Field(gt=0, description="Minutes until resolution is due")


DEFAULT_SLA_TARGETS: Dict[Priority, SLAPolicyEntry] = {
    Priority.LOW: SLAPolicyEntry(response_minutes=480, resolve_minutes=2880),
    Priority.MEDIUM: SLAPolicyEntry(response_minutes=240, resolve_minutes=1440),
    Priority.HIGH: SLAPolicyEntry(response_minutes=120, resolve_minutes=480),
    Priority.CRITICAL: SLAPolicyEntry(response_minutes=30, resolve_minutes=240),
}


class SLAPolicy(BaseModel):
    """
    SLA policy table, optionally loaded from YAML.

    Total over the four priorities: any priority missing from the source
    falls back to the reference budgets.
    """

    model_config = ConfigDict(frozen=True)

    sla_targets: Dict[Priority, SLAPolicyEntry] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_TARGETS),
        description="Budgets in minutes by priority"
    )
    alert_channels: List[str] = Field(
        default_factory=lambda: ["#support-escalations"],
        description="Slack channels notified on escalation"
    )

    @field_validator("sla_targets")
    @classmethod
    def fill_missing_priorities(
        cls, v: Dict[Priority, SLAPolicyEntry]
    ) -> Dict[Priority, SLAPolicyEntry]:
        """Ensure every priority has an entry."""
        for priority in PRIORITY_ORDER:
            if priority not in v:
                v[priority] = DEFAULT_SLA_TARGETS[priority]
        return v

    def policy_for(self, priority: Priority) -> SLAPolicyEntry:
        return self.sla_targets[Priority(priority)]


class EscalationPolicy:
    """
    Priority ladder used when a ticket freshly breaches.

    LOW -> MEDIUM -> HIGH -> CRITICAL, with CRITICAL as the ceiling.
    """

    SEVERITY_BY_PRIORITY = {
        Priority.LOW: AlertSeverity.INFO,
        Priority.MEDIUM: AlertSeverity.WARNING,
        Priority.HIGH: AlertSeverity.ERROR,
        Priority.CRITICAL: AlertSeverity.CRITICAL,
    }

    @staticmethod
    def next_priority(current: Priority) -> Optional[Priority]:
        """Return the next-higher priority, or None when already at the ceiling."""
        index = PRIORITY_ORDER.index(Priority(current))
        if index + 1 >= len(PRIORITY_ORDER):
            return None
        return PRIORITY_ORDER[index + 1]

    @classmethod
    def severity_for(cls, priority: Priority) -> AlertSeverity:
        return cls.SEVERITY_BY_PRIORITY[Priority(priority)]


class SLACalculator:
    """
    Pure functions for SLA breach calculations.

    Stateless utility class keeping all breach arithmetic in one place.
    """

    @staticmethod
    def is_response_breached(ticket: Ticket, elapsed_minutes: float) -> bool:
        return (
            ticket.first_response_at is None
            and ticket.sla_response_time is not None
            and elapsed_minutes > ticket.sla_response_time
        )

    @staticmethod
    def is_resolve_breached(ticket: Ticket, elapsed_minutes: float) -> bool:
        return (
            ticket.resolved_at is None
            and ticket.sla_resolve_time is not None
            and elapsed_minutes > ticket.sla_resolve_time
        )

    @classmethod
    def evaluate(cls, ticket: Ticket, now: datetime) -> BreachEvaluation:
        """
        Evaluate a ticket's response and resolve budgets as of ``now``.

        The response and resolve checks are independent; a ticket is
        breached when either one is.
        """
        elapsed = ticket.elapsed_minutes(now)
        return BreachEvaluation(
            ticket_id=ticket.id,
            elapsed_minutes=elapsed,
            response_breached=cls.is_response_breached(ticket, elapsed),
            resolve_breached=cls.is_resolve_breached(ticket, elapsed),
            previously_breached=ticket.sla_breach,
        )
