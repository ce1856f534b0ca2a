"""
Core Exceptions
================

Error taxonomy of the SLA engine.

Services raise these; the HTTP layer maps them to status codes, while the
bulk loop and the periodic sweep catch them per ticket.
"""

from typing import Iterable, Optional


class ApplicationException(Exception):
    """Root of every error the engine raises on purpose."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DomainException(ApplicationException):
    """A business rule could not be satisfied."""


class RepositoryException(ApplicationException):
    """The ticket store rejected an operation."""


class ValidationException(ApplicationException):
    """Input failed a check that request models cannot express."""


class ConfigurationException(ApplicationException):
    """Startup configuration (e.g. the SLA policy file) is invalid."""


class ResourceNotFoundException(ApplicationException):
    """A ticket or agent id does not resolve."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        suffix = f" with id '{resource_id}'" if resource_id else ""
        super().__init__(f"{resource_type}{suffix} not found", details)


class NoEligibleAgentException(DomainException):
    """
    Raised by the assignment balancer when no agent-capable user exists.

    Ticket creation treats this as soft: the ticket stays unassigned.
    """

    def __init__(self, roles: Iterable[str], details: Optional[dict] = None):
        self.roles = list(roles)
        super().__init__(
            f"No eligible agent holding any of the roles {self.roles}",
            details or {"roles": self.roles}
        )


class ExternalServiceException(ApplicationException):
    """A collaborator outside the process failed."""

    retryable = False

    def __init__(self, service_name: str, message: str, details: Optional[dict] = None):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class DependencyFailureException(ExternalServiceException):
    """Ticket store or agent directory is unreachable. Callers may retry."""

    retryable = True

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Ticket Store", message, details)


class SideEffectException(ExternalServiceException):
    """Sentiment analysis or alert delivery failed. Logged, never propagated."""
