"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for the SLA engine.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from supportdesk.sla.interfaces.controllers import (
    tickets_router,
    build_ticket_service,
    get_ticket_service,
)

__all__ = ["tickets_router", "build_ticket_service", "get_ticket_service"]
