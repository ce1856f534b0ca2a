"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import String, DateTime, Boolean, Integer, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.infrastructure.database import Base
from supportdesk.config import Priority, TicketStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'support_tickets' table.
    """
    __tablename__ = "support_tickets"

    # Primary key (opaque string id)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Ownership
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    assigned_agent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Ticket content
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="MANUAL")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # State
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketStatus.OPEN.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # SLA tracking
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sla_resolve_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sla_breach: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_support_tickets_status_created", "status", "created_at"),
        Index("ix_support_tickets_agent_status", "assigned_agent_id", "status"),
    )


class CommentModel(Base):
    """
    Database model for ticket messages.

    Maps to the 'ticket_messages' table.
    """
    __tablename__ = "ticket_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AgentModel(Base):
    """
    Database model for the agent directory.

    Maps to the 'agents' table. Owned by the user service; this engine only reads it.
    """
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
