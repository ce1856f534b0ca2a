"""Tests for the side-effect dispatcher"""
import asyncio
import logging
from datetime import datetime, timezone

from supportdesk.config import AlertSeverity, Priority
from supportdesk.sla.application import (
    EscalationAlert,
    SentimentAnalysisRequested,
    SideEffectDispatcher,
)


def _alert(ticket_id="t-1"):
    return EscalationAlert(
        ticket_id=ticket_id,
        previous_priority=Priority.LOW,
        new_priority=Priority.MEDIUM,
        severity=AlertSeverity.WARNING,
        escalated=True,
        triggered_at=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
    )


class TestSideEffectDispatcher:
    async def test_drain_routes_by_event_type(self, dispatcher, recorder):
        dispatcher.emit(_alert())
        dispatcher.emit(SentimentAnalysisRequested(comment_id="c-1", ticket_id="t-1"))

        delivered = await dispatcher.drain()

        assert delivered == 2
        assert len(recorder.alerts) == 1
        assert recorder.sentiment == [SentimentAnalysisRequested(comment_id="c-1", ticket_id="t-1")]
        assert dispatcher.pending == 0

    async def test_full_queue_drops_without_blocking(self, caplog):
        dispatcher = SideEffectDispatcher(max_queue_size=1)

        assert dispatcher.emit(_alert("t-1")) is True
        with caplog.at_level(logging.WARNING):
            assert dispatcher.emit(_alert("t-2")) is False

        assert dispatcher.dropped == 1
        assert dispatcher.pending == 1
        assert "Side-effect queue full" in caplog.text

    async def test_handler_failure_is_logged_and_isolated(self, caplog):
        dispatcher = SideEffectDispatcher()
        delivered = []

        async def broken(event):
            raise RuntimeError("webhook down")

        async def working(event):
            delivered.append(event)

        dispatcher.register(EscalationAlert, broken)
        dispatcher.register(EscalationAlert, working)
        dispatcher.emit(_alert())

        with caplog.at_level(logging.ERROR):
            await dispatcher.drain()

        assert len(delivered) == 1
        assert "Side effect failed" in caplog.text

    async def test_unhandled_event_type_is_ignored(self):
        dispatcher = SideEffectDispatcher()
        dispatcher.emit(_alert())

        assert await dispatcher.drain() == 1

    async def test_worker_delivers_and_stop_flushes(self, dispatcher, recorder):
        await dispatcher.start()
        assert dispatcher.is_running

        dispatcher.emit(_alert("t-1"))
        await asyncio.sleep(0.01)
        dispatcher.emit(_alert("t-2"))
        await dispatcher.stop()

        assert not dispatcher.is_running
        assert sorted(a.ticket_id for a in recorder.alerts) == ["t-1", "t-2"]
