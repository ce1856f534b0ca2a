"""
SLA Side-Effect Events
=======================

One-way outbound events emitted by the ticket lifecycle.

Sentiment analysis and escalation alerts are side effects: the engine emits
an event onto a bounded queue and moves on. A worker delivers queued events
to the registered handlers. Handler failures are logged and the event is
dropped; a full queue drops new events with a warning instead of blocking
the caller.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, DefaultDict, List, Optional, Type

from supportdesk.config import Priority, AlertSeverity
from supportdesk.core import SideEffectException
from supportdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SentimentAnalysisRequested:
    """A non-internal comment was posted and should be scored."""
    comment_id: str
    ticket_id: str


@dataclass(frozen=True)
class EscalationAlert:
    """
    A ticket transitioned into SLA breach.

    ``escalated`` is False when the ticket was already at the priority
    ceiling; ``new_priority`` then equals ``previous_priority``.
    """
    ticket_id: str
    previous_priority: Priority
    new_priority: Priority
    severity: AlertSeverity
    escalated: bool
    triggered_at: datetime


EventHandler = Callable[[object], Awaitable[None]]


class SideEffectDispatcher:
    """
    Bounded outbound channel for side-effect events.

    Usage:
        dispatcher = SideEffectDispatcher(max_queue_size=1000)
        dispatcher.register(EscalationAlert, notifier.send_alert)
        await dispatcher.start()
        dispatcher.emit(alert)
        ...
        await dispatcher.stop()
    """

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: DefaultDict[Type, List[EventHandler]] = defaultdict(list)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    def register(self, event_type: Type, handler: EventHandler) -> None:
        """Register an async handler for an event type."""
        self._handlers[event_type].append(handler)

    def emit(self, event: object) -> bool:
        """
        Queue an event without waiting for delivery.

        Returns:
            False if the queue was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Side-effect queue full, dropping event",
                extra={
                    "event_type": type(event).__name__,
                    "queue_size": self._queue.qsize(),
                    "dropped_total": self.dropped,
                }
            )
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: object) -> None:
        """Run every handler for an event, logging and dropping failures."""
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception as e:
                failure = SideEffectException(
                    getattr(handler, "__qualname__", repr(handler)),
                    str(e),
                )
                logger.error(
                    "Side effect failed",
                    extra={
                        "event_type": type(event).__name__,
                        "event": repr(event),
                        "error": failure.message,
                    }
                )

    async def drain(self) -> int:
        """
        Deliver every queued event inline.

        Returns:
            Number of events delivered
        """
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return delivered
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()
            delivered += 1

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Start the background delivery worker."""
        if self._worker is not None:
            logger.warning("Side-effect dispatcher already running")
            return
        self._worker = asyncio.create_task(self._run(), name="side-effect-dispatcher")
        logger.info("Side-effect dispatcher started")

    async def stop(self) -> None:
        """Stop the worker and flush what is still queued."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        flushed = await self.drain()
        logger.info("Side-effect dispatcher stopped", extra={"flushed_events": flushed})

    @property
    def is_running(self) -> bool:
        return self._worker is not None
