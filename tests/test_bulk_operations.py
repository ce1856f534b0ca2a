"""Tests for bulk ticket operations"""
import pytest
from pydantic import ValidationError

from supportdesk.config import BulkOperationKind, Priority, TicketStatus
from supportdesk.sla.application import BulkOperationRequest, TicketCreateDTO


async def _tickets(service, n, **overrides):
    created = []
    for i in range(n):
        values = dict(user_id="user-1", subject=f"Bulk {i}")
        values.update(overrides)
        created.append(await service.create(TicketCreateDTO(**values)))
    return [t.id for t in created]


class TestBulkRequestValidation:
    """Request shape checks"""

    def test_assign_requires_agent(self):
        with pytest.raises(ValidationError):
            BulkOperationRequest(ticket_ids=["t1"], operation="assign")

    def test_update_priority_requires_priority(self):
        with pytest.raises(ValidationError):
            BulkOperationRequest(ticket_ids=["t1"], operation="update_priority", data={})

    def test_empty_ticket_list_rejected(self):
        with pytest.raises(ValidationError):
            BulkOperationRequest(ticket_ids=[], operation="close")

    def test_duplicate_ids_collapse(self):
        request = BulkOperationRequest(ticket_ids=["t1", "t2", "t1"], operation="close")
        assert request.ticket_ids == ["t1", "t2"]


class TestBulkOperation:
    """Per-ticket isolation"""

    async def test_missing_ticket_counted_not_fatal(self, service):
        ids = await _tickets(service, 2)
        request = BulkOperationRequest(
            ticket_ids=[ids[0], "does-not-exist", ids[1]],
            operation=BulkOperationKind.CLOSE,
        )

        result = await service.bulk_operation(request)

        assert result.success == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert "does-not-exist" in result.errors[0]
        for ticket_id in ids:
            assert (await service.get_ticket(ticket_id)).status == TicketStatus.CLOSED

    async def test_bulk_assign(self, service):
        ids = await _tickets(service, 3)
        request = BulkOperationRequest(
            ticket_ids=ids,
            operation="assign",
            data={"assigned_to": "agent-b"},
        )

        result = await service.bulk_operation(request)

        assert result.success == 3
        for ticket_id in ids:
            ticket = await service.get_ticket(ticket_id)
            assert ticket.assigned_agent_id == "agent-b"
            assert ticket.status == TicketStatus.IN_PROGRESS

    async def test_bulk_assign_unknown_agent_fails_each(self, service):
        ids = await _tickets(service, 2)
        request = BulkOperationRequest(ticket_ids=ids, operation="assign", data={"assigned_to": "ghost"})

        result = await service.bulk_operation(request)

        assert result.success == 0
        assert result.failed == 2

    async def test_bulk_update_priority(self, service):
        ids = await _tickets(service, 2, priority=Priority.LOW)
        request = BulkOperationRequest(ticket_ids=ids, operation="update_priority", data={"priority": "HIGH"})

        result = await service.bulk_operation(request)

        assert result.success == 2
        for ticket_id in ids:
            ticket = await service.get_ticket(ticket_id)
            assert ticket.priority == Priority.HIGH
            # Budgets are stamped at creation only
            assert ticket.sla_response_time == 480

    async def test_bulk_add_tag_deduplicates(self, service):
        ids = await _tickets(service, 2, tags=["vip"])
        request = BulkOperationRequest(ticket_ids=ids, operation="add_tag", data={"tag": "vip"})
        await service.bulk_operation(request)

        request = BulkOperationRequest(ticket_ids=ids, operation="add_tag", data={"tag": "billing"})
        result = await service.bulk_operation(request)

        assert result.success == 2
        for ticket_id in ids:
            assert (await service.get_ticket(ticket_id)).tags == ["vip", "billing"]

    async def test_assign_with_one_unknown_ticket(self, service):
        ids = await _tickets(service, 4)
        request = BulkOperationRequest(
            ticket_ids=[ids[0], ids[1], "does-not-exist", ids[2], ids[3]],
            operation="assign",
            data={"assigned_to": "agent-c"},
        )

        result = await service.bulk_operation(request)

        assert (result.success, result.failed) == (4, 1)
        assert "does-not-exist" in result.errors[0]
        for ticket_id in ids:
            ticket = await service.get_ticket(ticket_id)
            assert ticket.assigned_agent_id == "agent-c"
            assert ticket.status == TicketStatus.IN_PROGRESS

    async def test_store_error_on_one_ticket_is_isolated(self, service, reject_updates, deliver):
        ids = await _tickets(service, 3)
        await reject_updates(ids[0])
        request = BulkOperationRequest(ticket_ids=ids, operation=BulkOperationKind.CLOSE)

        result = await service.bulk_operation(request)
        await deliver()

        assert (result.success, result.failed) == (2, 1)
        assert ids[0] in result.errors[0]
        assert (await service.get_ticket(ids[0])).status == TicketStatus.OPEN
        for ticket_id in ids[1:]:
            assert (await service.get_ticket(ticket_id)).status == TicketStatus.CLOSED
