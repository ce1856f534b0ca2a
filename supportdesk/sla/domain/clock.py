"""
Time Sources
============

Every SLA computation asks a ``Clock`` for "now" so that evaluations are
deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Supplies the current time as a timezone-aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time."""


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """
    Manually driven clock.

    Time only moves when ``advance`` or ``set`` is called.
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by a ``timedelta(**delta)``, e.g. ``advance(minutes=31)``."""
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment
