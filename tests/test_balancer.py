"""Unit tests for AssignmentBalancer"""
from uuid import uuid4

import pytest

from supportdesk.config import TicketStatus
from supportdesk.core import NoEligibleAgentException
from supportdesk.sla.application import AssignmentBalancer, TicketCreateDTO
from supportdesk.sla.domain import AgentWorkload
from supportdesk.sla.infrastructure import SQLAlchemyAgentDirectory


@pytest.fixture
def balancer(session, ticket_repo):
    return AssignmentBalancer(SQLAlchemyAgentDirectory(session), ticket_repo, ["AGENT", "ADMIN"])


async def _give(ticket_repo, make_ticket, agent_id, status=TicketStatus.OPEN, count=1):
    for _ in range(count):
        await ticket_repo.create(make_ticket(id=str(uuid4()), assigned_agent_id=agent_id, status=status))


class TestPickLeastLoaded:
    def test_lowest_count_wins(self):
        chosen = AssignmentBalancer.pick_least_loaded([
            AgentWorkload("agent-a", 3),
            AgentWorkload("agent-b", 1),
            AgentWorkload("agent-c", 2),
        ])
        assert chosen.agent_id == "agent-b"

    def test_tie_broken_by_agent_id(self):
        chosen = AssignmentBalancer.pick_least_loaded([
            AgentWorkload("agent-z", 1),
            AgentWorkload("agent-m", 1),
        ])
        assert chosen.agent_id == "agent-m"

    def test_empty_pool(self):
        assert AssignmentBalancer.pick_least_loaded([]) is None


class TestSelectAgent:
    async def test_counts_only_open_and_in_progress(self, balancer, seeded_agents, ticket_repo, make_ticket):
        await _give(ticket_repo, make_ticket, "agent-a", count=2)
        await _give(ticket_repo, make_ticket, "agent-b", status=TicketStatus.IN_PROGRESS)
        await _give(ticket_repo, make_ticket, "agent-c", status=TicketStatus.CLOSED, count=3)
        await _give(ticket_repo, make_ticket, "agent-c", status=TicketStatus.RESOLVED)

        workloads = {w.agent_id: w.open_tickets for w in await balancer.snapshot_workloads()}

        assert workloads == {"agent-a": 2, "agent-b": 1, "agent-c": 0}
        assert await balancer.select_agent() == "agent-c"

    async def test_non_agent_roles_are_ignored(self, balancer, seeded_agents):
        agent_ids = [w.agent_id for w in await balancer.snapshot_workloads()]
        assert "customer-1" not in agent_ids

    async def test_no_eligible_agent(self, balancer):
        with pytest.raises(NoEligibleAgentException) as exc_info:
            await balancer.select_agent()

        assert exc_info.value.roles == ["AGENT", "ADMIN"]

    async def test_selection_reflects_latest_assignments(self, balancer, seeded_agents, ticket_repo, make_ticket):
        assert await balancer.select_agent() == "agent-a"
        await _give(ticket_repo, make_ticket, "agent-a")
        assert await balancer.select_agent() == "agent-b"

    async def test_idle_agent_chosen_over_busier_ones(self, balancer, seeded_agents, ticket_repo, make_ticket):
        await _give(ticket_repo, make_ticket, "agent-a", count=2)
        await _give(ticket_repo, make_ticket, "agent-c")

        assert await balancer.select_agent() == "agent-b"

    async def test_new_ticket_goes_to_idle_agent(self, service, ticket_repo, make_ticket):
        await _give(ticket_repo, make_ticket, "agent-a", count=2)
        await _give(ticket_repo, make_ticket, "agent-c")

        ticket = await service.create(TicketCreateDTO(user_id="user-9", subject="Printer jammed"))

        assert ticket.assigned_agent_id == "agent-b"
