"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from supportdesk.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    NoEligibleAgentException,
    ExternalServiceException,
    DependencyFailureException,
    SideEffectException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "NoEligibleAgentException",
    "ExternalServiceException",
    "DependencyFailureException",
    "SideEffectException",
]
