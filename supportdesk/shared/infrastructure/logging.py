"""
Structured Logging
==================

One JSON object per log line, so sweep results, breach transitions and
side-effect failures can be queried by field.

Usage:
    from supportdesk.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket escalated", extra={"ticket_id": "3f1c..."})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"
_SECRET_MARKERS = ("password", "api_key", "webhook_url", "token")
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "httpx")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that stamps every record with ``timestamp``,
    ``environment`` and, inside a request, ``correlation_id``.

    String fields whose name looks like a credential are masked.
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["environment"] = getattr(record, "environment", self.environment)
        if hasattr(record, "correlation_id"):
            log_record["correlation_id"] = record.correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and any(m in key.lower() for m in _SECRET_MARKERS):
                log_record[key] = REDACTED


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """Route every logger through a single stdout JSON handler."""
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(CustomJsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        environment=environment,
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any) -> Iterator[None]:
    """
    Log ``"<operation> completed"`` with ``latency_ms`` when the block exits,
    whether or not it raised.

    Usage:
        with log_latency(logger, "sla_check", tickets=42):
            ...
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                **extra_context,
            },
        )
