"""
Configuration
=============

Enumerations shared by every layer and the environment-driven ``Settings``.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Priority(str, Enum):
    """Ticket priority, lowest first."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class BulkOperationKind(str, Enum):
    ASSIGN = "assign"
    CLOSE = "close"
    UPDATE_PRIORITY = "update_priority"
    ADD_TAG = "add_tag"


class AlertSeverity(str, Enum):
    """Severity attached to escalation alerts."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]
OPEN_STATUSES = [TicketStatus.OPEN, TicketStatus.IN_PROGRESS]
VALID_STATUSES = list(TicketStatus)

_ENVIRONMENTS = {"development", "staging", "production"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """
    Runtime settings, read from environment variables or ``.env``.

    Variable names are the field names, case-insensitive
    (``SLA_EVALUATION_INTERVAL=0`` turns the sweep scheduler off).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Service
    app_name: str = "supportdesk-sla"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", description="development, staging or production")
    debug: bool = Field(default=False, description="Echo SQL statements")
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Ticket store
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/supportdesk",
        description="Async SQLAlchemy URL; sqlite+aiosqlite is accepted for local runs"
    )
    db_pool_size: int = Field(default=5, ge=1)
    db_max_overflow: int = Field(default=10, ge=0)

    # SLA engine
    sla_policy_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="YAML override of the SLA policy table, read once at startup"
    )
    sla_evaluation_interval: int = Field(
        default=60,
        description="Seconds between SLA sweeps, 0 disables the scheduler",
        ge=0
    )
    sla_sweep_page_size: int = Field(default=500, ge=1)
    default_priority: Priority = Priority.MEDIUM
    agent_roles: List[str] = Field(
        default=["AGENT", "ADMIN"],
        description="Roles that make a user eligible for ticket assignment"
    )

    # Side effects
    side_effect_queue_size: int = Field(
        default=1000,
        description="Outbound events held before new ones are dropped",
        ge=1
    )
    slack_webhook_url: Optional[str] = Field(default=None, description="Escalation alerts are skipped when unset")
    slack_channel: str = "#support-escalations"
    slack_timeout_seconds: float = Field(default=5.0, ge=0.1, le=30)
    sentiment_service_url: Optional[str] = Field(default=None, description="Sentiment scoring is skipped when unset")
    sentiment_timeout_seconds: float = Field(default=5.0, ge=0.1, le=30)

    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in _ENVIRONMENTS:
            raise ValueError(f"environment must be one of {sorted(_ENVIRONMENTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
