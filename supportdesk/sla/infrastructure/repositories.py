"""
SLA Persistence
===============

SQLAlchemy-backed ticket, comment and agent stores, plus the YAML policy loader.

Rows map to domain entities at this boundary. Connection-level database
errors surface as ``DependencyFailureException`` so callers can retry.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from functools import partial, wraps
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import yaml
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.config import Priority, TicketStatus, PRIORITY_ORDER
from supportdesk.core import (
    ConfigurationException,
    DependencyFailureException,
    RepositoryException,
)
from supportdesk.infrastructure.database import after_commit, pending_after_commit
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.sla.application import (
    ITicketRepository,
    ICommentRepository,
    IAgentDirectory,
    ISLAPolicyProvider,
    IUnitOfWork,
    SideEffectDispatcher,
)
from supportdesk.sla.domain import Agent, Comment, SLAPolicy, Ticket
from supportdesk.sla.infrastructure.models import AgentModel, CommentModel, TicketModel

logger = get_logger(__name__)

PRIORITY_RANK = {p.value: rank for rank, p in enumerate(PRIORITY_ORDER)}

_UNREACHABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


def translate_db_errors(method):
    """Map SQLAlchemy errors onto the application exception taxonomy."""

    @wraps(method)
    async def wrapper(*args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except _UNREACHABLE_ERRORS as e:
            raise DependencyFailureException(str(e), {"operation": method.__name__}) from e
        except SQLAlchemyError as e:
            raise RepositoryException(str(e), {"operation": method.__name__}) from e

    return wrapper


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the database."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _ticket_to_domain(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        user_id=model.user_id,
        customer_id=model.customer_id,
        subject=model.subject,
        description=model.description,
        category=model.category,
        source=model.source,
        tags=list(model.tags or []),
        priority=Priority(model.priority),
        status=TicketStatus(model.status),
        assigned_agent_id=model.assigned_agent_id,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        first_response_at=_as_utc(model.first_response_at),
        resolved_at=_as_utc(model.resolved_at),
        closed_at=_as_utc(model.closed_at),
        sla_response_time=model.sla_response_time,
        sla_resolve_time=model.sla_resolve_time,
        sla_breach=bool(model.sla_breach),
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    Tickets in the ``support_tickets`` table.

    Handles persistence of Ticket entities using async SQLAlchemy. Reads
    always repopulate from the database so that rows changed by conditional
    UPDATE statements are never served stale from the identity map.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _conditions(filters: dict) -> list:
        conditions = []

        if "status" in filters:
            status_filter = filters["status"]
            if isinstance(status_filter, (list, tuple, set)):
                conditions.append(TicketModel.status.in_([_column_value(s) for s in status_filter]))
            else:
                conditions.append(TicketModel.status == _column_value(status_filter))

        for key in ("priority", "assigned_agent_id", "user_id", "customer_id", "category"):
            if key in filters:
                conditions.append(getattr(TicketModel, key) == _column_value(filters[key]))

        if "sla_breach" in filters:
            conditions.append(TicketModel.sla_breach == bool(filters["sla_breach"]))

        if "created_after" in filters:
            conditions.append(TicketModel.created_at >= filters["created_after"])
        if "created_before" in filters:
            conditions.append(TicketModel.created_at < filters["created_before"])

        if "has_first_response" in filters:
            if filters["has_first_response"]:
                conditions.append(TicketModel.first_response_at.is_not(None))
            else:
                conditions.append(TicketModel.first_response_at.is_(None))

        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            conditions.append(or_(
                TicketModel.subject.ilike(pattern),
                TicketModel.description.ilike(pattern),
            ))

        return conditions

    @translate_db_errors
    async def find_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _ticket_to_domain(model) if model else None

    @translate_db_errors
    async def find_many(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters, highest priority then newest first."""
        stmt = select(TicketModel).execution_options(populate_existing=True)

        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        priority_rank = case(PRIORITY_RANK, value=TicketModel.priority, else_=-1)
        stmt = stmt.order_by(priority_rank.desc(), TicketModel.created_at.desc(), TicketModel.id)
        stmt = stmt.limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return [_ticket_to_domain(model) for model in result.scalars().all()]

    @translate_db_errors
    async def count(self, filters: dict) -> int:
        """Count tickets matching filters."""
        stmt = select(func.count()).select_from(TicketModel)
        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    @translate_db_errors
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a ticket row and return it as an entity."""
        model = TicketModel(
            id=ticket.id,
            user_id=ticket.user_id,
            customer_id=ticket.customer_id,
            subject=ticket.subject,
            description=ticket.description,
            category=ticket.category,
            source=ticket.source,
            tags=list(ticket.tags),
            priority=_column_value(ticket.priority),
            status=_column_value(ticket.status),
            assigned_agent_id=ticket.assigned_agent_id,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            sla_response_time=ticket.sla_response_time,
            sla_resolve_time=ticket.sla_resolve_time,
            sla_breach=ticket.sla_breach,
        )

        self._session.add(model)
        await self._session.flush()

        return _ticket_to_domain(model)

    @translate_db_errors
    async def update(self, ticket_id: str, changes: Dict[str, Any]) -> Optional[Ticket]:
        """Update existing ticket fields."""
        model = await self._session.get(TicketModel, ticket_id, populate_existing=True)
        if model is None:
            return None

        for field_name, value in changes.items():
            if not hasattr(TicketModel, field_name):
                raise RepositoryException(f"Unknown ticket field: {field_name}")
            if field_name == "tags":
                value = list(value)
            setattr(model, field_name, _column_value(value))

        await self._session.flush()

        return _ticket_to_domain(model)

    @translate_db_errors
    async def compare_and_set_breach(
        self,
        ticket_id: str,
        expected: bool,
        breached: bool,
        escalate_from: Optional[Priority] = None,
        escalate_to: Optional[Priority] = None,
        at: Optional[datetime] = None
    ) -> bool:
        """Single conditional UPDATE on the breach flag, optionally bumping priority."""
        conditions = [TicketModel.id == ticket_id, TicketModel.sla_breach == expected]
        values: Dict[str, Any] = {"sla_breach": breached}
        if escalate_from is not None:
            conditions.append(TicketModel.priority == _column_value(escalate_from))
        if escalate_to is not None:
            values["priority"] = _column_value(escalate_to)
            if at is not None:
                values["updated_at"] = at

        stmt = (
            update(TicketModel)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    @translate_db_errors
    async def stamp_first_response(self, ticket_id: str, at: datetime) -> bool:
        """Single conditional UPDATE that only fills an empty first_response_at."""
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.first_response_at.is_(None))
            .values(first_response_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyCommentRepository(ICommentRepository):
    """Append-only comment rows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @translate_db_errors
    async def create(self, comment: Comment) -> Comment:
        """Create new comment."""
        model = CommentModel(
            id=comment.id,
            ticket_id=comment.ticket_id,
            author_id=comment.author_id,
            content=comment.content,
            is_internal=comment.is_internal,
            created_at=comment.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return comment


class SQLAlchemyAgentDirectory(IAgentDirectory):
    """Reads agent-capable users from the 'agents' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: AgentModel) -> Agent:
        return Agent(id=model.id, name=model.name, email=model.email, role=model.role)

    @translate_db_errors
    async def list_agents_with_role(self, roles: Iterable[str]) -> List[Agent]:
        stmt = (
            select(AgentModel)
            .where(AgentModel.role.in_(list(roles)))
            .order_by(AgentModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @translate_db_errors
    async def find_by_id(self, agent_id: str) -> Optional[Agent]:
        model = await self._session.get(AgentModel, agent_id)
        return self._to_domain(model) if model else None


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    Savepoints and commit-gated side effects on one AsyncSession.

    Events become ``after_commit`` callbacks on the session. A savepoint that
    fails drops the callbacks it added, and a rolled-back session drops all
    of them.
    """

    def __init__(self, session: AsyncSession, dispatcher: SideEffectDispatcher):
        self._session = session
        self._dispatcher = dispatcher

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        callbacks = pending_after_commit(self._session)
        mark = len(callbacks)
        try:
            async with self._session.begin_nested():
                yield
        except Exception:
            del callbacks[mark:]
            raise

    def publish_after_commit(self, event: Any) -> None:
        after_commit(self._session, partial(self._dispatcher.emit, event))


class YAMLPolicyProvider(ISLAPolicyProvider):
    """
    SLA policy provider that loads from YAML once.

    A missing file yields the reference policy table. The table does not
    change while the process runs.

    Example file:
        sla_targets:
          CRITICAL: {response_minutes: 30, resolve_minutes: 240}
        alert_channels: ["#support-escalations"]
    """

    def __init__(self, config_path: str | Path):
        self._config_path = Path(config_path)
        self._policy = self._load_policy()

    def _load_policy(self) -> SLAPolicy:
        if not self._config_path.exists():
            logger.info(
                "SLA policy file not found, using reference policy",
                extra={"path": str(self._config_path)}
            )
            return SLAPolicy()

        with open(self._config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            policy = SLAPolicy(**data)
        except ValueError as e:
            raise ConfigurationException(
                f"Invalid SLA policy file {self._config_path}: {e}"
            ) from e

        logger.info("SLA policy loaded", extra={"path": str(self._config_path)})
        return policy

    def get_policy(self) -> SLAPolicy:
        """Get the SLA policy table."""
        return self._policy
