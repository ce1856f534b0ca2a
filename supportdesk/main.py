"""
Supportdesk SLA - Main Application
===================================

Support-ticket lifecycle with SLA tracking and escalation.

Modules:
- SLA: budgets, breach detection, escalation, assignment, bulk operations

Layers, outermost first:
- Interfaces: FastAPI router and dependency wiring
- Application: Services, DTOs and side-effect events
- Domain: Entities, value objects and the SLA calculator
- Infrastructure: Database, Slack, sentiment service, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Settings and error taxonomy
from supportdesk.config import settings
from supportdesk.core import ApplicationException

# Infrastructure
from supportdesk.infrastructure.database import (
    init_database,
    close_database,
    create_tables,
    get_session_context,
)

# SLA Module
from supportdesk.sla.application import (
    EscalationAlert,
    SentimentAnalysisRequested,
    SideEffectDispatcher,
)
from supportdesk.sla.domain import SystemClock
from supportdesk.sla.infrastructure import (
    HttpSentimentAnalyzer,
    SlackAlertNotifier,
    SLAScheduler,
    YAMLPolicyProvider,
)
from supportdesk.sla.interfaces import build_ticket_service, tickets_router

# Shared
from supportdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from supportdesk.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Wire collaborators on startup and release them on shutdown.

    STARTUP:
    1. Configure JSON logging
    2. Initialize database and create tables
    3. Load the SLA policy table
    4. Start the side-effect dispatcher (Slack, sentiment)
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop the sweep timer
    2. Flush and stop the dispatcher
    3. Close HTTP clients
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Supportdesk SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Without a reachable store the API still boots; ticket routes answer 503
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Table creation skipped, ticket store unreachable", extra={"error": str(e)})

    policy_provider = YAMLPolicyProvider(settings.sla_policy_path)
    clock = SystemClock()

    slack_notifier = SlackAlertNotifier()
    sentiment_analyzer = HttpSentimentAnalyzer()
    dispatcher = SideEffectDispatcher(max_queue_size=settings.side_effect_queue_size)
    dispatcher.register(EscalationAlert, slack_notifier)
    dispatcher.register(SentimentAnalysisRequested, sentiment_analyzer)
    await dispatcher.start()

    app.state.policy_provider = policy_provider
    app.state.dispatcher = dispatcher
    app.state.clock = clock

    async def sla_evaluation_job():
        """Background SLA sweep."""
        async with get_session_context() as session:
            service = build_ticket_service(session, policy_provider, dispatcher, clock)
            await service.run_sla_check()

    sla_scheduler = None
    if settings.sla_evaluation_interval > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await sla_scheduler.start(sla_evaluation_job)
    else:
        logger.info("SLA scheduler disabled")
    app.state.sla_scheduler = sla_scheduler

    logger.info("Supportdesk SLA service started successfully")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down Supportdesk SLA service")

    if sla_scheduler:
        await sla_scheduler.stop()

    await dispatcher.stop()
    await slack_notifier.close()
    await sentiment_analyzer.close()

    await close_database()

    logger.info("Supportdesk SLA service shutdown complete")


# Application
app = FastAPI(
    title="Supportdesk SLA API",
    description="""
    ## Support Ticket SLA & Escalation Engine

    **Endpoints:**
    - `POST /tickets` - Create a ticket (SLA budgets stamped, auto-assigned)
    - `GET /tickets` - List tickets with filters
    - `PATCH /tickets/{id}` - Update a ticket
    - `POST /tickets/{id}/comments` - Comment on a ticket
    - `POST /tickets/bulk` - Bulk assign, close, reprioritize or tag
    - `POST /tickets/sla-check` - Run the SLA sweep on demand

    **Default SLA budgets (minutes, overridable in sla_policy.yaml):**

    | Priority | Response | Resolution |
    |----------|----------|------------|
    | Critical | 30       | 240        |
    | High     | 120      | 480        |
    | Medium   | 240      | 1440       |
    | Low      | 480      | 2880       |
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === Middleware and error handlers ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Routers ===
app.include_router(tickets_router)


# === Health ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Liveness plus the state of the sweep timer and the side-effect queue."""
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    dispatcher = getattr(request.app.state, "dispatcher", None)
    checks = {
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "side_effects": (
            f"running ({dispatcher.pending} pending)"
            if dispatcher and dispatcher.is_running else "stopped"
        ),
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


# === Local run ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "supportdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
