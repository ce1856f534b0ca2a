"""
Tests for breach detection, escalation and the periodic SLA sweep
"""
from datetime import timedelta

from supportdesk.config import AlertSeverity, Priority, TicketStatus
from supportdesk.infrastructure.database import commit_session, rollback_session
from supportdesk.sla.application import SLAEvaluator, TicketCreateDTO, TicketUpdateDTO

from tests.conftest import T0


async def _create(service, priority=None, subject="VPN down"):
    return await service.create(TicketCreateDTO(user_id="user-1", subject=subject, priority=priority))


class TestEscalation:
    """Fresh breaches raise priority by exactly one level"""

    async def test_breach_escalates_one_level(self, service, clock, deliver, recorder):
        ticket = await _create(service, Priority.MEDIUM)

        clock.advance(minutes=241)
        summary = await service.run_sla_check()
        await deliver()

        stored = await service.get_ticket(ticket.id)
        assert summary.breaches_detected == 1
        assert stored.sla_breach is True
        assert stored.priority == Priority.HIGH
        assert len(recorder.alerts) == 1
        alert = recorder.alerts[0]
        assert alert.previous_priority == Priority.MEDIUM
        assert alert.new_priority == Priority.HIGH
        assert alert.severity == AlertSeverity.ERROR
        assert alert.escalated is True

    async def test_escalation_keeps_original_budgets(self, service, clock):
        ticket = await _create(service, Priority.LOW)

        clock.advance(minutes=481)
        await service.run_sla_check()

        stored = await service.get_ticket(ticket.id)
        assert stored.priority == Priority.MEDIUM
        assert stored.sla_response_time == 480
        assert stored.sla_resolve_time == 2880

    async def test_still_breached_does_not_escalate_again(self, service, clock, deliver, recorder):
        ticket = await _create(service, Priority.MEDIUM)

        clock.advance(minutes=241)
        await service.run_sla_check()
        clock.advance(minutes=60)
        second = await service.run_sla_check()
        await service.update(ticket.id, TicketUpdateDTO(category="vpn"))
        await deliver()

        stored = await service.get_ticket(ticket.id)
        assert second.breaches_detected == 0
        assert stored.priority == Priority.HIGH
        assert len(recorder.alerts) == 1

    async def test_critical_breach_stays_critical(self, service, clock, deliver, recorder):
        ticket = await _create(service, Priority.CRITICAL)

        clock.advance(minutes=31)
        await service.run_sla_check()
        await service.run_sla_check()
        await deliver()

        stored = await service.get_ticket(ticket.id)
        assert stored.sla_breach is True
        assert stored.priority == Priority.CRITICAL
        assert len(recorder.alerts) == 1
        assert recorder.alerts[0].escalated is False
        assert recorder.alerts[0].severity == AlertSeverity.CRITICAL

    async def test_within_budget_no_breach(self, service, clock, deliver, recorder):
        ticket = await _create(service, Priority.CRITICAL)

        clock.advance(minutes=29)
        summary = await service.run_sla_check()
        await deliver()

        assert summary.tickets_evaluated == 1
        assert summary.breaches_detected == 0
        assert (await service.get_ticket(ticket.id)).sla_breach is False
        assert recorder.alerts == []


class TestResponseThenResolve:
    """A reply stops the response clock; the resolve clock keeps running"""

    async def test_answered_low_ticket(self, service, clock, deliver, recorder):
        ticket = await _create(service, Priority.LOW)

        clock.advance(minutes=10)
        await service.add_comment(ticket.id, "agent-a", "We are on it")
        assert (await service.get_ticket(ticket.id)).first_response_at == T0 + timedelta(minutes=10)

        clock.set(T0 + timedelta(minutes=500))
        await service.run_sla_check()
        stored = await service.get_ticket(ticket.id)
        assert stored.sla_breach is False
        assert stored.priority == Priority.LOW

        clock.set(T0 + timedelta(minutes=2881))
        await service.run_sla_check()
        await deliver()
        stored = await service.get_ticket(ticket.id)
        assert stored.sla_breach is True
        assert stored.priority == Priority.MEDIUM
        assert [a.severity for a in recorder.alerts] == [AlertSeverity.WARNING]


class TestSweep:
    """Sweep scope and bookkeeping"""

    async def test_only_open_and_in_progress_are_swept(self, service, clock):
        open_ticket = await _create(service, Priority.HIGH, subject="open")
        working = await _create(service, Priority.HIGH, subject="working")
        closed = await _create(service, Priority.HIGH, subject="closed")
        await service.assign(working.id, "agent-b")
        await service.close(closed.id)

        clock.advance(minutes=121)
        summary = await service.run_sla_check()

        assert summary.tickets_evaluated == 2
        assert summary.breaches_detected == 2
        assert (await service.get_ticket(open_ticket.id)).priority == Priority.CRITICAL
        assert (await service.get_ticket(working.id)).status == TicketStatus.IN_PROGRESS
        assert (await service.get_ticket(closed.id)).sla_breach is False

    async def test_sweep_pages_through_all_tickets(self, session, seeded_agents, policy_provider,
                                                   dispatcher, clock):
        from supportdesk.sla.interfaces import build_ticket_service

        service = build_ticket_service(session, policy_provider, dispatcher, clock)
        service._sweep_page_size = 2
        for i in range(5):
            await _create(service, Priority.CRITICAL, subject=f"t{i}")

        clock.advance(minutes=31)
        summary = await service.run_sla_check()

        assert summary.tickets_evaluated == 5
        assert summary.breaches_detected == 5

    async def test_cleared_breach_is_counted(self, service, clock, ticket_repo, deliver, recorder):
        ticket = await _create(service, Priority.MEDIUM)

        clock.advance(minutes=241)
        await service.run_sla_check()
        await ticket_repo.stamp_first_response(ticket.id, clock.now())

        summary = await service.run_sla_check()
        await deliver()

        assert summary.breaches_cleared == 1
        assert (await service.get_ticket(ticket.id)).sla_breach is False
        assert len(recorder.alerts) == 1

    async def test_failed_ticket_does_not_stop_sweep(self, service, clock, monkeypatch):
        first = await _create(service, Priority.CRITICAL, subject="first")
        second = await _create(service, Priority.CRITICAL, subject="second")

        original = service.check_sla_breach

        async def flaky(ticket_id):
            if ticket_id == first.id:
                raise RuntimeError("store hiccup")
            return await original(ticket_id)

        monkeypatch.setattr(service, "check_sla_breach", flaky)
        clock.advance(minutes=31)
        summary = await service.run_sla_check()

        assert summary.failed == 1
        assert summary.breaches_detected == 1
        assert (await service.get_ticket(second.id)).sla_breach is True

    async def test_store_error_on_one_ticket_is_isolated(self, service, clock, reject_updates,
                                                         deliver, recorder):
        first = await _create(service, Priority.HIGH, subject="first")
        locked = await _create(service, Priority.HIGH, subject="locked")
        last = await _create(service, Priority.HIGH, subject="last")
        await reject_updates(locked.id)

        clock.advance(minutes=121)
        summary = await service.run_sla_check()
        await deliver()

        assert summary.failed == 1
        assert summary.tickets_evaluated == 2
        assert summary.breaches_detected == 2
        for ticket_id in (first.id, last.id):
            stored = await service.get_ticket(ticket_id)
            assert stored.sla_breach is True
            assert stored.priority == Priority.CRITICAL
        untouched = await service.get_ticket(locked.id)
        assert untouched.sla_breach is False
        assert untouched.priority == Priority.HIGH
        assert sorted(a.ticket_id for a in recorder.alerts) == sorted([first.id, last.id])

    async def test_rolled_back_sweep_sends_no_alert(self, service, session, clock, dispatcher, recorder):
        ticket = await _create(service, Priority.MEDIUM)
        await commit_session(session)

        clock.advance(minutes=241)
        summary = await service.run_sla_check()
        await rollback_session(session)
        await dispatcher.drain()

        assert summary.breaches_detected == 1
        assert recorder.alerts == []
        stored = await service.get_ticket(ticket.id)
        assert stored.sla_breach is False
        assert stored.priority == Priority.MEDIUM

    async def test_alert_waits_for_commit(self, service, session, clock, dispatcher, recorder):
        await _create(service, Priority.MEDIUM)

        clock.advance(minutes=241)
        await service.run_sla_check()
        assert await dispatcher.drain() == 0

        await commit_session(session)
        assert await dispatcher.drain() == 1
        assert len(recorder.alerts) == 1


class TestConcurrentEvaluation:
    """The breach flag is flipped by exactly one evaluator"""

    async def test_only_one_evaluator_records_transition(self, service, ticket_repo, clock):
        ticket = await _create(service, Priority.MEDIUM)
        stale = await ticket_repo.find_by_id(ticket.id)
        clock.advance(minutes=241)

        sweep = SLAEvaluator(ticket_repo, clock)
        request = SLAEvaluator(ticket_repo, clock)
        first = await sweep.evaluate_and_record(stale)
        second = await request.evaluate_and_record(stale)

        assert first.entered_breach is True
        assert second.breached is True
        assert second.entered_breach is False

    async def test_stale_check_does_not_escalate_twice(self, service, ticket_repo, clock, deliver, recorder):
        ticket = await _create(service, Priority.LOW)
        stale = await ticket_repo.find_by_id(ticket.id)
        clock.advance(minutes=481)

        await service.check_sla_breach(ticket.id)
        evaluation = await service._evaluator.evaluate_and_record(stale)
        await deliver()

        assert evaluation.entered_breach is False
        assert (await service.get_ticket(ticket.id)).priority == Priority.MEDIUM
        assert len(recorder.alerts) == 1

    async def test_priority_patched_after_read_is_not_overwritten(self, service, ticket_repo, clock):
        ticket = await _create(service, Priority.MEDIUM)
        stale = await ticket_repo.find_by_id(ticket.id)
        clock.advance(minutes=241)
        await ticket_repo.update(ticket.id, {"priority": Priority.CRITICAL})

        evaluation = await service._evaluator.evaluate_and_record(stale)

        assert evaluation.recorded is False
        stored = await service.get_ticket(ticket.id)
        assert stored.priority == Priority.CRITICAL
        assert stored.sla_breach is False

        fresh = await service.check_sla_breach(ticket.id)
        assert fresh.entered_breach is True
        assert fresh.escalated_to is None
        assert (await service.get_ticket(ticket.id)).priority == Priority.CRITICAL

    async def test_missing_ticket_is_skipped(self, service):
        assert await service.check_sla_breach("does-not-exist") is None
