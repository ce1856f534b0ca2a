"""
Ticket Store Connection
=======================

Async SQLAlchemy engine and session handling for the ticket store.

PostgreSQL (asyncpg) in deployments; ``sqlite+aiosqlite`` URLs work for
local runs. One session per request or per sweep run, committed on success
and rolled back on error. Callbacks registered with ``after_commit`` run
only once that commit has succeeded.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from supportdesk.config import settings

_AFTER_COMMIT = "after_commit_callbacks"


class Base(DeclarativeBase):
    """Declarative base shared by the ticket, message and agent tables."""


_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.debug}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works.

    The sqlite3 driver otherwise begins transactions on its own and breaks
    ``begin_nested()``.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> AsyncEngine:
    """Return the engine created by ``init_database``."""
    if _engine is None:
        raise RuntimeError("Ticket store not initialized; call init_database() at startup")
    return _engine


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session factory.

    Args:
        database_url: Overrides ``settings.database_url``
    """
    global _engine, _sessions

    url = database_url or settings.database_url
    if not url.startswith("sqlite"):
        # asyncpg takes ssl=, not sslmode=
        url = url.replace("sslmode=", "ssl=")

    _engine = create_async_engine(url, **_engine_options(url))
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(_engine)
    _sessions = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections on shutdown."""
    global _engine, _sessions

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None


def pending_after_commit(session: AsyncSession) -> List[Callable[[], None]]:
    """The live list of callbacks waiting for the session's next commit."""
    return session.info.setdefault(_AFTER_COMMIT, [])


def after_commit(session: AsyncSession, callback: Callable[[], None]) -> None:
    """Run ``callback`` after the session's next successful ``commit_session``."""
    pending_after_commit(session).append(callback)


async def commit_session(session: AsyncSession) -> None:
    """Commit, then run the callbacks registered with ``after_commit``."""
    await session.commit()
    for callback in session.info.pop(_AFTER_COMMIT, []):
        callback()


async def rollback_session(session: AsyncSession) -> None:
    """Roll back and forget pending ``after_commit`` callbacks."""
    session.info.pop(_AFTER_COMMIT, None)
    await session.rollback()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Unit-of-work scope outside a request, e.g. the SLA sweep.

    Usage:
        async with get_session_context() as session:
            service = build_ticket_service(session, ...)
            await service.run_sla_check()
    """
    if _sessions is None:
        raise RuntimeError("Ticket store not initialized; call init_database() at startup")

    async with _sessions() as session:
        try:
            yield session
            await commit_session(session)
        except Exception:
            await rollback_session(session)
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one committed-or-rolled-back session per request."""
    async with get_session_context() as session:
        yield session


async def create_tables() -> None:
    """Create missing tables. Development convenience; deployments use migrations."""
    import supportdesk.sla.infrastructure.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
