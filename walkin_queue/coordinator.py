from __future__ import annotations

# The Coordinator is the *authoritative brain* of a branch queue.
#
# Every mutation of a branch (customer/staff commands and the grace-period
# sweep) runs inside `serialized(branch_id)`, which holds that branch's lock.
# Events staged during the section go to ordered subscribers before the lock
# is released and to everyone else right after.

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator

from .admission import CapacityAdmissionController
from .errors import FeedbackNotAllowed, InvalidTransition, StaleOperation, TicketNotFound, UnknownBranch
from .events import Event, EventBus, EventHandler
from .grace import DEFAULT_DEMOTION_PENALTY, GracePeriodMonitor
from .models import (
    FINISHED_STATUSES,
    Actor,
    Branch,
    CustomerInfo,
    ServiceCategory,
    StatusTransition,
    Ticket,
    TicketStatus,
)
from .repository import BranchState
from .sequencer import PositionSequencer, queue_order
from .state import SYSTEM_ONLY, LifecycleStateMachine

logger = logging.getLogger(__name__)


class Coordinator:
    """Command surface for customers, reception, tellers and the scheduler."""

    def __init__(
        self,
        branches: list[Branch] | None = None,
        *,
        demotion_penalty: int = DEFAULT_DEMOTION_PENALTY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.clock = clock
        self.events = EventBus()
        self.sequencer = PositionSequencer()
        self.machine = LifecycleStateMachine(clock=clock)
        self.admission = CapacityAdmissionController(self.machine)
        self.monitor = GracePeriodMonitor(self, penalty=demotion_penalty, clock=clock)

        self._registry_lock = threading.Lock()
        self._branches: dict[str, BranchState] = {}
        self._ticket_branch: dict[str, str] = {}

        for b in branches or []:
            self.register_branch(b)

    # -------------------- branches --------------------

    def register_branch(self, branch: Branch) -> None:
        with self._registry_lock:
            if branch.id in self._branches:
                raise ValueError(f"branch {branch.id} already registered")
            self._branches[branch.id] = BranchState(branch)

    def branch_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._branches)

    def branch(self, branch_id: str) -> Branch:
        """Copy of the branch policy; change it with `update_branch`."""
        with self.serialized(branch_id) as state:
            return replace(state.branch)

    def update_branch(self, branch_id: str, **changes: Any) -> Branch:
        """Change branch policy fields, then hand any freed slot to the queue."""
        if "id" in changes:
            raise ValueError("branch id cannot change")
        with self.serialized(branch_id) as state:
            state.branch = replace(state.branch, **changes)
            self.admission.promote_next(state, now=self.clock())
            return replace(state.branch)

    def set_paused(self, branch_id: str, paused: bool) -> None:
        """Toggle the join gate; enforcing it is up to the join front-end."""
        with self.serialized(branch_id) as state:
            state.branch.is_paused = paused
        logger.info("branch %s %s", branch_id, "paused" if paused else "resumed")

    def accepts_joins(self, branch_id: str) -> bool:
        return not self.branch(branch_id).is_paused

    def subscribe(self, handler: EventHandler, *, ordered: bool = False) -> None:
        self.events.subscribe(handler, ordered=ordered)

    def _state(self, branch_id: str) -> BranchState:
        with self._registry_lock:
            state = self._branches.get(branch_id)
        if state is None:
            raise UnknownBranch(f"unknown branch {branch_id}")
        return state

    @contextmanager
    def serialized(self, branch_id: str) -> Iterator[BranchState]:
        """Hold the branch lock; deliver staged events when the section ends."""
        state = self._state(branch_id)
        events: list[Event] = []
        try:
            with state.lock:
                state.depth += 1
                try:
                    yield state
                finally:
                    state.depth -= 1
                    if state.depth == 0:
                        events = state.drain()
                        self.events.publish_ordered(events)
        finally:
            self.events.publish(events)

    def _locate(self, ticket_id: str) -> str:
        with self._registry_lock:
            branch_id = self._ticket_branch.get(ticket_id)
        if branch_id is None:
            raise TicketNotFound(f"ticket {ticket_id} not found")
        return branch_id

    @contextmanager
    def _ticket(self, ticket_id: str) -> Iterator[tuple[BranchState, Ticket]]:
        with self.serialized(self._locate(ticket_id)) as state:
            ticket = state.get(ticket_id)
            if ticket is None:
                raise TicketNotFound(f"ticket {ticket_id} not found")
            yield state, ticket

    # -------------------- commands --------------------

    def join_queue(
        self,
        branch_id: str,
        customer: CustomerInfo,
        *,
        service_category: ServiceCategory | None = None,
        now: float | None = None,
    ) -> Ticket:
        ts = self.clock() if now is None else now
        with self.serialized(branch_id) as state:
            ticket = Ticket(
                id=str(uuid.uuid4()),
                branch_id=branch_id,
                queue_number=self.sequencer.next_number(state),
                customer=customer,
                joined_at=ts,
                status=self.machine.initial_state(),
                service_category=service_category,
            )
            state.add(ticket)
            with self._registry_lock:
                self._ticket_branch[ticket.id] = branch_id
            state.audit.append(
                ticket,
                StatusTransition(
                    ticket_id=ticket.id,
                    from_status=None,
                    to_status=ticket.status,
                    timestamp=ts,
                    triggered_by=Actor.CUSTOMER,
                    reason="Joined queue",
                ),
            )
            state.touch([ticket])
            logger.info("ticket %s joined branch %s as #%d", ticket.id, branch_id, ticket.queue_number)
            joined = ticket.snapshot()
            self.admission.promote_next(state, now=ts)
            return joined

    def request_transition(
        self,
        ticket_id: str,
        target: TicketStatus,
        actor: Actor,
        reason: str | None = None,
        *,
        teller_id: str | None = None,
        counter_id: str | None = None,
        now: float | None = None,
    ) -> Ticket:
        ts = self.clock() if now is None else now
        with self._ticket(ticket_id) as (state, ticket):
            if ticket.is_terminal:
                raise StaleOperation(f"ticket {ticket_id} is already {ticket.status.value}")
            if (ticket.status, target) in SYSTEM_ONLY:
                raise InvalidTransition(
                    f"{ticket.status.value} -> {target.value} is driven by the coordinator, not by commands"
                )
            self.machine.transition(
                state, ticket, target, actor, reason, now=ts, teller_id=teller_id, counter_id=counter_id
            )
            self._settle(state, ticket, ts)
            return ticket.snapshot()

    def confirm_entry(self, ticket_id: str, *, now: float | None = None) -> Ticket:
        ts = self.clock() if now is None else now
        with self._ticket(ticket_id) as (state, ticket):
            if ticket.is_terminal:
                raise StaleOperation(f"ticket {ticket_id} is already {ticket.status.value}")
            self.admission.admit(state, ticket, Actor.CUSTOMER, now=ts)
            self._settle(state, ticket, ts)
            return ticket.snapshot()

    def flag_no_show(
        self, ticket_id: str, actor: Actor, *, requeue: bool = False, now: float | None = None
    ) -> Ticket:
        """Mark a ticket as a no-show and remove it, or send it back with the demotion penalty."""
        ts = self.clock() if now is None else now
        with self._ticket(ticket_id) as (state, ticket):
            if ticket.is_terminal:
                raise StaleOperation(f"ticket {ticket_id} is already {ticket.status.value}")
            if requeue:
                if not self.machine.can_transition(ticket.status, TicketStatus.REMOTE_WAITING, actor, no_show=True):
                    raise InvalidTransition(f"{actor.value} cannot requeue a {ticket.status.value} ticket")
                self.monitor.demote(state, ticket, now=ts, actor=actor, reason="no-show", no_show=True)
            else:
                self.machine.transition(state, ticket, TicketStatus.REMOVED, actor, "no-show", now=ts, no_show=True)
                self._settle(state, ticket, ts)
            return ticket.snapshot()

    def cancel(self, ticket_id: str, actor: Actor = Actor.CUSTOMER, *, now: float | None = None) -> Ticket:
        return self.request_transition(ticket_id, TicketStatus.REMOVED, actor, "cancelled", now=now)

    def tick(self, now: float | None = None) -> list[Ticket]:
        """Run one grace-period sweep over all branches."""
        return self.monitor.sweep(now)

    def submit_feedback(self, ticket_id: str, stars: int) -> Ticket:
        if not 1 <= stars <= 5:
            raise ValueError("stars must be between 1 and 5")
        with self._ticket(ticket_id) as (state, ticket):
            if ticket.status not in FINISHED_STATUSES:
                raise FeedbackNotAllowed(f"ticket {ticket_id} has not been served")
            if ticket.feedback_stars is not None:
                raise FeedbackNotAllowed(f"ticket {ticket_id} already has feedback")
            ticket.feedback_stars = stars
            state.touch([ticket])
            return ticket.snapshot()

    def add_note(self, ticket_id: str, note: str) -> Ticket:
        note = note.strip()
        if not note:
            raise ValueError("note required")
        with self._ticket(ticket_id) as (state, ticket):
            if ticket.is_terminal:
                raise StaleOperation(f"ticket {ticket_id} is already {ticket.status.value}")
            ticket.notes.append(note)
            state.touch([ticket])
            return ticket.snapshot()

    def _settle(self, state: BranchState, ticket: Ticket, now: float) -> None:
        """Post-conditions run after every committed command."""
        if ticket.status is TicketStatus.REMOVED:
            state.touch(self.sequencer.compact(state))
        self.admission.promote_next(state, now=now)

    # -------------------- queries --------------------

    def get_ticket(self, ticket_id: str) -> Ticket:
        with self._ticket(ticket_id) as (_state, ticket):
            return ticket.snapshot()

    def tickets(self, branch_id: str, *, status: TicketStatus | None = None) -> list[Ticket]:
        with self.serialized(branch_id) as state:
            found = state.tickets() if status is None else state.with_status(status)
            return [t.snapshot() for t in queue_order(found)]

    def occupancy(self, branch_id: str) -> int:
        with self.serialized(branch_id) as state:
            return self.admission.current_occupancy(state)

    def audit_log(self, branch_id: str) -> tuple[StatusTransition, ...]:
        with self.serialized(branch_id) as state:
            return state.audit.entries()

    def snapshot(self, branch_id: str) -> dict[str, Any]:
        """Consistent view of one branch for display collaborators."""
        with self.serialized(branch_id) as state:
            b = state.branch
            return {
                "branch_id": b.id,
                "occupancy": self.admission.current_occupancy(state),
                "max_occupancy": b.max_occupancy,
                "is_paused": b.is_paused,
                "queues": {
                    status.value: [
                        {"id": t.id, "queue_number": t.queue_number, "name": t.customer.name}
                        for t in state.with_status(status)
                    ]
                    for status in (
                        TicketStatus.REMOTE_WAITING,
                        TicketStatus.ELIGIBLE_FOR_ENTRY,
                        TicketStatus.IN_BUILDING,
                        TicketStatus.IN_SERVICE,
                    )
                },
            }

    def status(self) -> dict[str, Any]:
        return {"type": "status_response", "branches": {bid: self.snapshot(bid) for bid in self.branch_ids()}}
