"""
pytest configuration and shared fixtures

Every test runs against a fresh in-memory SQLite database and a frozen
clock starting at 2024-01-15 09:00 UTC.
"""
from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from supportdesk.config import Priority, TicketStatus
from supportdesk.infrastructure.database import Base, commit_session, enable_sqlite_savepoints
from supportdesk.sla.application import (
    EscalationAlert,
    SentimentAnalysisRequested,
    SideEffectDispatcher,
)
from supportdesk.sla.domain import FrozenClock, Ticket
from supportdesk.sla.infrastructure import (
    AgentModel,
    SQLAlchemyTicketRepository,
    YAMLPolicyProvider,
)
from supportdesk.sla.interfaces import build_ticket_service

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


class EventRecorder:
    """Collects side-effect events delivered by the dispatcher"""

    def __init__(self):
        self.alerts = []
        self.sentiment = []

    async def on_alert(self, event):
        self.alerts.append(event)

    async def on_sentiment(self, event):
        self.sentiment.append(event)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with maker() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def dispatcher(recorder):
    dispatcher = SideEffectDispatcher(max_queue_size=100)
    dispatcher.register(EscalationAlert, recorder.on_alert)
    dispatcher.register(SentimentAnalysisRequested, recorder.on_sentiment)
    return dispatcher


@pytest.fixture
def deliver(session, dispatcher):
    """Commit the session, then run the side effects the commit released"""

    async def _deliver():
        await commit_session(session)
        return await dispatcher.drain()

    return _deliver


@pytest.fixture
def policy_provider(tmp_path):
    """Reference policy table (no YAML file present)"""
    return YAMLPolicyProvider(tmp_path / "sla_policy.yaml")


@pytest_asyncio.fixture
async def seeded_agents(session):
    """Three agents plus one customer who must never receive tickets"""
    session.add_all([
        AgentModel(id="agent-a", name="Ada", email="ada@example.com", role="AGENT"),
        AgentModel(id="agent-b", name="Bo", email="bo@example.com", role="AGENT"),
        AgentModel(id="agent-c", name="Cy", email="cy@example.com", role="ADMIN"),
        AgentModel(id="customer-1", name="Casey", email="casey@example.com", role="CUSTOMER"),
    ])
    await session.flush()
    return ["agent-a", "agent-b", "agent-c"]


@pytest.fixture
def ticket_repo(session):
    return SQLAlchemyTicketRepository(session)


@pytest.fixture
def service(session, seeded_agents, policy_provider, dispatcher, clock):
    return build_ticket_service(session, policy_provider, dispatcher, clock)


@pytest.fixture
def unstaffed_service(session, policy_provider, dispatcher, clock):
    """Lifecycle service with an empty agent directory"""
    return build_ticket_service(session, policy_provider, dispatcher, clock)


@pytest.fixture
def make_ticket():
    """Build a domain Ticket with sensible defaults"""

    def _make(**overrides):
        values = dict(
            id=str(uuid4()),
            user_id="user-1",
            subject="Cannot log in",
            priority=Priority.MEDIUM,
            status=TicketStatus.OPEN,
            created_at=T0,
            updated_at=T0,
            sla_response_time=240,
            sla_resolve_time=1440,
        )
        values.update(overrides)
        return Ticket(**values)

    return _make


@pytest.fixture
def reject_updates(session):
    """Install a trigger that makes the store refuse every UPDATE of one ticket"""

    async def _install(ticket_id):
        await session.execute(text(
            "CREATE TRIGGER reject_ticket_update BEFORE UPDATE ON support_tickets "
            f"WHEN OLD.id = '{ticket_id}' "
            "BEGIN SELECT RAISE(ABORT, 'ticket row is locked'); END"
        ))

    return _install
