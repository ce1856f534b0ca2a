"""
SLA Domain Layer
================

Domain layer for the SLA & escalation engine.

Contains:
- Entities: Core business objects (Ticket, Comment, Agent, BreachEvaluation)
- Value Objects: Immutable policy objects (SLAPolicy, SLAPolicyEntry)
- Domain Services: Stateless business logic (SLACalculator, EscalationPolicy)
- Clocks: Time sources used by every SLA computation

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from supportdesk.sla.domain.clock import Clock, SystemClock, FrozenClock
from supportdesk.sla.domain.entities import (
    Ticket,
    Comment,
    Agent,
    AgentWorkload,
    BreachEvaluation,
    dedupe_tags,
)
from supportdesk.sla.domain.value_objects import (
    SLACalculator,
    SLAPolicy,
    SLAPolicyEntry,
    EscalationPolicy,
    DEFAULT_SLA_TARGETS,
)

__all__ = [
    # Clocks
    "Clock",
    "SystemClock",
    "FrozenClock",
    # Entities
    "Ticket",
    "Comment",
    "Agent",
    "AgentWorkload",
    "BreachEvaluation",
    "dedupe_tags",
    # Value Objects & Services
    "SLACalculator",
    "SLAPolicy",
    "SLAPolicyEntry",
    "EscalationPolicy",
    "DEFAULT_SLA_TARGETS",
]
