"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: balancer, evaluator and lifecycle each do one job
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

No service holds a lock or a cached workload across a store call; every
decision is made from a fresh read.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from supportdesk.config import (
    Priority, TicketStatus, BulkOperationKind, OPEN_STATUSES, VALID_STATUSES
)
from supportdesk.core import (
    ApplicationException,
    ValidationException,
    NoEligibleAgentException,
    ResourceNotFoundException,
)
from supportdesk.shared.infrastructure.logging import get_logger, log_latency
from supportdesk.sla.application.dto import (
    TicketCreateDTO,
    TicketUpdateDTO,
    BulkOperationRequest,
    BulkOperationResult,
    TicketStatsResponse,
    SLACheckSummary,
)
from supportdesk.sla.application.events import (
    SentimentAnalysisRequested,
    EscalationAlert,
)
from supportdesk.sla.domain import (
    Agent,
    AgentWorkload,
    BreachEvaluation,
    Clock,
    Comment,
    EscalationPolicy,
    SLACalculator,
    SLAPolicy,
    Ticket,
    dedupe_tags,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """
    Interface for ticket data access.

    ``filters`` is a dict supporting equality on ``status`` (a value or a
    list), ``priority``, ``assigned_agent_id``, ``user_id``, ``customer_id``,
    ``category`` and ``sla_breach``; ranges via ``created_after`` and
    ``created_before``; ``has_first_response``; and a text ``search``.
    """

    @abstractmethod
    async def find_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def find_many(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters, highest priority first."""

    @abstractmethod
    async def count(self, filters: dict) -> int:
        """Count tickets matching filters."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Persist a new ticket."""

    @abstractmethod
    async def update(self, ticket_id: str, changes: Dict[str, Any]) -> Optional[Ticket]:
        """Apply field changes. Returns None if the ticket does not exist."""

    @abstractmethod
    async def compare_and_set_breach(
        self,
        ticket_id: str,
        expected: bool,
        breached: bool,
        escalate_from: Optional[Priority] = None,
        escalate_to: Optional[Priority] = None,
        at: Optional[datetime] = None
    ) -> bool:
        """
        Atomically set ``sla_breach`` to ``breached`` only if it currently
        equals ``expected``. Returns True if this call changed the row.

        With ``escalate_to`` the same write also moves ``priority`` from
        ``escalate_from`` to ``escalate_to``, and only matches while the
        stored priority still equals ``escalate_from``.
        """

    @abstractmethod
    async def stamp_first_response(self, ticket_id: str, at: datetime) -> bool:
        """Set ``first_response_at`` only if it is still unset."""


class ICommentRepository(ABC):
    """Interface for ticket message data access."""

    @abstractmethod
    async def create(self, comment: Comment) -> Comment:
        """Persist a new comment."""


class IAgentDirectory(ABC):
    """Read-only access to users who can work tickets."""

    @abstractmethod
    async def list_agents_with_role(self, roles: Iterable[str]) -> List[Agent]:
        """Agents holding any of ``roles``, ordered by ID."""

    @abstractmethod
    async def find_by_id(self, agent_id: str) -> Optional[Agent]:
        """Get agent by ID."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Get the SLA policy table."""


class IUnitOfWork(ABC):
    """
    Transaction the lifecycle service runs in.

    Side-effect events are held until the outer transaction commits, so a
    rolled-back write never produces an alert or a sentiment request.
    """

    @abstractmethod
    def savepoint(self) -> AsyncContextManager[None]:
        """Nested scope; if the block raises, its writes and events are dropped."""

    @abstractmethod
    def publish_after_commit(self, event: Any) -> None:
        """Queue ``event`` for the dispatcher once the transaction commits."""


# ========== Assignment Balancer ==========

class AssignmentBalancer:
    """
    Picks the least-loaded eligible agent.

    Workloads are recomputed from the store on every call; nothing is cached
    between selections. Two simultaneous selections may pick the same agent,
    which the next selection corrects.
    """

    def __init__(
        self,
        agent_directory: IAgentDirectory,
        ticket_repository: ITicketRepository,
        agent_roles: Iterable[str]
    ):
        self._agents = agent_directory
        self._ticket_repo = ticket_repository
        self._roles = list(agent_roles)

    async def snapshot_workloads(self) -> List[AgentWorkload]:
        """Count open + in-progress tickets for every eligible agent."""
        agents = await self._agents.list_agents_with_role(self._roles)
        workloads = []
        for agent in agents:
            open_tickets = await self._ticket_repo.count({
                "assigned_agent_id": agent.id,
                "status": OPEN_STATUSES,
            })
            workloads.append(AgentWorkload(agent_id=agent.id, open_tickets=open_tickets))
        return workloads

    @staticmethod
    def pick_least_loaded(workloads: List[AgentWorkload]) -> Optional[AgentWorkload]:
        """Minimum open-ticket count, ties broken by agent ID ascending."""
        if not workloads:
            return None
        return min(workloads, key=lambda w: (w.open_tickets, w.agent_id))

    async def select_agent(self) -> str:
        """
        Choose the agent that should receive the next ticket.

        Raises:
            NoEligibleAgentException: If no agent holds an agent-capable role
        """
        chosen = self.pick_least_loaded(await self.snapshot_workloads())
        if chosen is None:
            raise NoEligibleAgentException(self._roles)

        logger.debug(
            "Agent selected",
            extra={"agent_id": chosen.agent_id, "open_tickets": chosen.open_tickets}
        )
        return chosen.agent_id


# ========== SLA Evaluator ==========

class SLAEvaluator:
    """
    Determines whether a ticket has breached its SLA and records transitions.

    The stored flag is only flipped through a conditional write, so when a
    sweep and a user update evaluate the same ticket at once exactly one of
    them sees the transition.
    """

    def __init__(self, ticket_repository: ITicketRepository, clock: Clock):
        self._ticket_repo = ticket_repository
        self._clock = clock

    def evaluate(self, ticket: Ticket, now: Optional[datetime] = None) -> BreachEvaluation:
        """Pure evaluation as of ``now`` (defaults to the clock)."""
        return SLACalculator.evaluate(ticket, now or self._clock.now())

    async def evaluate_and_record(self, ticket: Ticket) -> BreachEvaluation:
        """
        Evaluate and persist the breach flag if it changed.

        Entering breach raises priority one level in the same conditional
        write, starting from the priority this evaluation read. If the stored
        priority moved in the meantime nothing is recorded; the next
        evaluation starts from the new value.
        """
        evaluation = self.evaluate(ticket)
        if not evaluation.is_transition:
            return evaluation

        escalate_to = None
        if evaluation.breached:
            escalate_to = EscalationPolicy.next_priority(ticket.priority)

        evaluation.recorded = await self._ticket_repo.compare_and_set_breach(
            ticket.id,
            expected=ticket.sla_breach,
            breached=evaluation.breached,
            escalate_from=ticket.priority if evaluation.breached else None,
            escalate_to=escalate_to,
            at=self._clock.now(),
        )
        if evaluation.recorded:
            evaluation.escalated_to = escalate_to

        if evaluation.entered_breach:
            logger.warning(
                "SLA breach detected",
                extra={
                    "ticket_id": ticket.id,
                    "priority": ticket.priority.value,
                    "elapsed_minutes": round(evaluation.elapsed_minutes, 1),
                    "response_breached": evaluation.response_breached,
                    "resolve_breached": evaluation.resolve_breached,
                }
            )
        elif evaluation.cleared_breach:
            logger.info("SLA breach cleared", extra={"ticket_id": ticket.id})

        return evaluation


# ========== Ticket Lifecycle ==========

class TicketLifecycleService:
    """
    Single entry point for ticket mutations.

    Enforces the milestone latches, runs the SLA evaluator after every
    mutation, escalates on fresh breaches and hands side-effect events to the
    unit of work, which releases them once the transaction commits.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        comment_repository: ICommentRepository,
        agent_directory: IAgentDirectory,
        balancer: AssignmentBalancer,
        evaluator: SLAEvaluator,
        policy_provider: ISLAPolicyProvider,
        unit_of_work: IUnitOfWork,
        clock: Clock,
        default_priority: Priority = Priority.MEDIUM,
        sweep_page_size: int = 500,
    ):
        self._ticket_repo = ticket_repository
        self._comment_repo = comment_repository
        self._agents = agent_directory
        self._balancer = balancer
        self._evaluator = evaluator
        self._policy_provider = policy_provider
        self._uow = unit_of_work
        self._clock = clock
        self._default_priority = default_priority
        self._sweep_page_size = sweep_page_size

    async def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._ticket_repo.find_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    # ----- reads -----

    async def get_ticket(self, ticket_id: str) -> Ticket:
        return await self._require_ticket(ticket_id)

    async def list_tickets(
        self,
        filters: Optional[dict] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Ticket], int]:
        """Page through tickets. Returns (tickets, total matching)."""
        filters = filters or {}
        tickets = await self._ticket_repo.find_many(filters, limit=limit, offset=(page - 1) * limit)
        total = await self._ticket_repo.count(filters)
        return tickets, total

    async def ticket_stats(self, user_id: Optional[str] = None) -> TicketStatsResponse:
        """Counts by status, breached count and average first-response minutes."""
        scope = {"user_id": user_id} if user_id else {}

        total = await self._ticket_repo.count(scope)
        by_status = {}
        for status in VALID_STATUSES:
            by_status[status.value] = await self._ticket_repo.count({**scope, "status": status})
        breached = await self._ticket_repo.count({**scope, "sla_breach": True})

        responded = await self._ticket_repo.find_many(
            {**scope, "has_first_response": True},
            limit=max(total, 1),
        )
        if responded:
            avg = sum(
                (t.first_response_at - t.created_at).total_seconds() / 60 for t in responded
            ) / len(responded)
        else:
            avg = 0.0

        return TicketStatsResponse(
            total=total,
            by_status=by_status,
            sla_breach=breached,
            avg_response_time=round(avg),
        )

    # ----- mutations -----

    async def create(self, data: TicketCreateDTO) -> Ticket:
        """Stamp SLA budgets, persist, then auto-assign (best effort)."""
        now = self._clock.now()
        priority = data.priority or self._default_priority
        budget = self._policy_provider.get_policy().policy_for(priority)

        ticket = Ticket(
            id=str(uuid4()),
            user_id=data.user_id,
            customer_id=data.customer_id,
            subject=data.subject,
            description=data.description,
            category=data.category,
            source=data.source,
            tags=list(data.tags),
            priority=priority,
            status=TicketStatus.OPEN,
            created_at=now,
            updated_at=now,
            sla_response_time=budget.response_minutes,
            sla_resolve_time=budget.resolve_minutes,
        )
        ticket = await self._ticket_repo.create(ticket)

        await self._auto_assign(ticket.id)

        logger.info(
            "Ticket created",
            extra={"ticket_id": ticket.id, "priority": priority.value, "subject": data.subject}
        )
        return await self._require_ticket(ticket.id)

    async def _auto_assign(self, ticket_id: str) -> Optional[str]:
        """Assign to the least-loaded agent without touching the status."""
        try:
            agent_id = await self._balancer.select_agent()
            await self._ticket_repo.update(ticket_id, {"assigned_agent_id": agent_id})
        except NoEligibleAgentException:
            logger.warning(
                "No agents available for auto-assignment",
                extra={"ticket_id": ticket_id}
            )
            return None
        except ApplicationException as e:
            logger.error(
                "Auto-assignment failed",
                extra={"ticket_id": ticket_id, "error": e.message}
            )
            return None

        logger.info("Ticket auto-assigned", extra={"ticket_id": ticket_id, "agent_id": agent_id})
        return agent_id

    async def update(self, ticket_id: str, patch: TicketUpdateDTO) -> Ticket:
        """
        Apply a patch, stamp milestones, then re-run SLA evaluation.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
            ValidationException: If the patch sets no fields
        """
        changes = patch.to_changes()
        if not changes:
            raise ValidationException("Ticket update sets no fields", {"ticket_id": ticket_id})
        return await self._apply_changes(ticket_id, changes)

    async def _apply_changes(self, ticket_id: str, changes: Dict[str, Any]) -> Ticket:
        ticket = await self._require_ticket(ticket_id)
        now = self._clock.now()

        changes = dict(changes)
        if "tags" in changes:
            changes["tags"] = dedupe_tags(changes["tags"])
        changes.update(ticket.milestone_stamps(changes.get("status"), now))
        changes["updated_at"] = now

        updated = await self._ticket_repo.update(ticket_id, changes)
        if updated is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        await self.check_sla_breach(ticket_id)

        logger.info(
            "Ticket updated",
            extra={"ticket_id": ticket_id, "fields": sorted(k for k in changes if k != "updated_at")}
        )
        return await self._require_ticket(ticket_id)

    async def add_comment(
        self,
        ticket_id: str,
        author_id: str,
        content: str,
        is_internal: bool = False
    ) -> Comment:
        """
        Post a comment.

        The first non-internal comment stamps ``first_response_at``; later
        comments leave it alone. Non-internal comments are queued for
        sentiment analysis.
        """
        ticket = await self._require_ticket(ticket_id)
        now = self._clock.now()

        comment = await self._comment_repo.create(Comment(
            id=str(uuid4()),
            ticket_id=ticket_id,
            author_id=author_id,
            content=content,
            is_internal=is_internal,
            created_at=now,
        ))

        if not is_internal:
            if ticket.first_response_at is None:
                if await self._ticket_repo.stamp_first_response(ticket_id, now):
                    logger.info("First response recorded", extra={"ticket_id": ticket_id})
                    await self.check_sla_breach(ticket_id)
            self._uow.publish_after_commit(
                SentimentAnalysisRequested(comment_id=comment.id, ticket_id=ticket_id)
            )

        logger.info(
            "Comment added to ticket",
            extra={"ticket_id": ticket_id, "comment_id": comment.id, "is_internal": is_internal}
        )
        return comment

    async def assign(self, ticket_id: str, agent_id: str) -> Ticket:
        """
        Explicit assignment. Always moves the ticket to IN_PROGRESS.

        Raises:
            ResourceNotFoundException: If the ticket or agent does not exist
        """
        await self._require_ticket(ticket_id)
        if await self._agents.find_by_id(agent_id) is None:
            raise ResourceNotFoundException("Agent", agent_id)

        ticket = await self._apply_changes(ticket_id, {
            "assigned_agent_id": agent_id,
            "status": TicketStatus.IN_PROGRESS,
        })
        logger.info("Ticket assigned", extra={"ticket_id": ticket_id, "agent_id": agent_id})
        return ticket

    async def close(self, ticket_id: str) -> Ticket:
        return await self.update(ticket_id, TicketUpdateDTO(status=TicketStatus.CLOSED))

    async def _add_tag(self, ticket_id: str, tag: str) -> Ticket:
        ticket = await self._require_ticket(ticket_id)
        return await self._apply_changes(ticket_id, {"tags": ticket.tags + [tag]})

    async def _apply_bulk_item(self, request: BulkOperationRequest, ticket_id: str) -> None:
        if request.operation == BulkOperationKind.ASSIGN:
            await self.assign(ticket_id, request.data.assigned_to)
        elif request.operation == BulkOperationKind.CLOSE:
            await self.close(ticket_id)
        elif request.operation == BulkOperationKind.UPDATE_PRIORITY:
            await self.update(ticket_id, TicketUpdateDTO(priority=request.data.priority))
        elif request.operation == BulkOperationKind.ADD_TAG:
            await self._add_tag(ticket_id, request.data.tag)

    async def bulk_operation(self, request: BulkOperationRequest) -> BulkOperationResult:
        """
        Apply one operation to every ticket independently.

        Each ticket runs in its own savepoint. A failure on one ticket rolls
        back only that ticket's writes and events, is logged and counted, and
        never stops the remaining tickets.
        """
        success = 0
        failed = 0
        errors = []

        for ticket_id in request.ticket_ids:
            try:
                async with self._uow.savepoint():
                    await self._apply_bulk_item(request, ticket_id)
                success += 1
            except Exception as e:
                failed += 1
                errors.append(f"{ticket_id}: {e}")
                logger.error(
                    "Bulk operation failed for ticket",
                    extra={
                        "ticket_id": ticket_id,
                        "operation": request.operation.value,
                        "error": str(e),
                    }
                )

        logger.info(
            "Bulk operation complete",
            extra={"operation": request.operation.value, "success": success, "failed": failed}
        )
        return BulkOperationResult(success=success, failed=failed, errors=errors)

    # ----- SLA -----

    async def check_sla_breach(self, ticket_id: str) -> Optional[BreachEvaluation]:
        """
        Evaluate one ticket and escalate on a fresh breach.

        A missing ticket is skipped.
        """
        ticket = await self._ticket_repo.find_by_id(ticket_id)
        if ticket is None:
            return None

        evaluation = await self._evaluator.evaluate_and_record(ticket)
        if evaluation.entered_breach:
            self._announce_escalation(ticket, evaluation)
        return evaluation

    def _announce_escalation(self, ticket: Ticket, evaluation: BreachEvaluation) -> None:
        """
        Queue the escalation alert for a recorded breach.

        The priority bump itself was part of the breach write. The SLA minutes
        stamped at creation are kept as they are.
        """
        new_priority = evaluation.escalated_to
        if new_priority is not None:
            logger.info(
                "Ticket escalated",
                extra={
                    "ticket_id": ticket.id,
                    "previous_priority": ticket.priority.value,
                    "new_priority": new_priority.value,
                }
            )

        resulting = new_priority or ticket.priority
        self._uow.publish_after_commit(EscalationAlert(
            ticket_id=ticket.id,
            previous_priority=ticket.priority,
            new_priority=resulting,
            severity=EscalationPolicy.severity_for(resulting),
            escalated=new_priority is not None,
            triggered_at=self._clock.now(),
        ))

    async def _open_ticket_ids(self) -> List[str]:
        ids = []
        offset = 0
        while True:
            page = await self._ticket_repo.find_many(
                {"status": OPEN_STATUSES},
                limit=self._sweep_page_size,
                offset=offset,
            )
            ids.extend(t.id for t in page)
            if len(page) < self._sweep_page_size:
                return ids
            offset += self._sweep_page_size

    async def run_sla_check(self) -> SLACheckSummary:
        """
        Periodic sweep: re-evaluate every OPEN and IN_PROGRESS ticket.

        Tickets are processed one at a time, each in its own savepoint; a
        failure on one ticket rolls back that ticket only, is logged, and the
        sweep moves on.
        """
        summary = SLACheckSummary()
        ticket_ids = await self._open_ticket_ids()

        with log_latency(logger, "sla_check", tickets=len(ticket_ids)):
            for ticket_id in ticket_ids:
                try:
                    async with self._uow.savepoint():
                        evaluation = await self.check_sla_breach(ticket_id)
                except Exception as e:
                    summary.failed += 1
                    logger.error(
                        "SLA check failed for ticket",
                        extra={"ticket_id": ticket_id, "error": str(e)}
                    )
                    continue

                if evaluation is None:
                    continue
                summary.tickets_evaluated += 1
                if evaluation.entered_breach:
                    summary.breaches_detected += 1
                elif evaluation.cleared_breach:
                    summary.breaches_cleared += 1

        logger.info("SLA check completed", extra=summary.model_dump())
        return summary
