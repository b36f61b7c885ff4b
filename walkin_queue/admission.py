from __future__ import annotations

# Capacity gate for the building.
#
# Occupancy is always recomputed from the live ticket set; there is no cached
# counter to drift.

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Collection, Iterable

from .errors import AtCapacity
from .events import TicketPromoted
from .models import Actor, Branch, Ticket, TicketStatus

if TYPE_CHECKING:
    from .repository import BranchState
    from .state import LifecycleStateMachine

logger = logging.getLogger(__name__)


def count_occupancy(branch: Branch, tickets: Iterable[Ticket]) -> int:
    counted = {TicketStatus.IN_BUILDING}
    if not branch.exclude_in_service_from_occupancy:
        counted.add(TicketStatus.IN_SERVICE)
    return sum(1 for t in tickets if t.status in counted)


@dataclass(frozen=True)
class Promotion:
    ticket: Ticket
    rank: int


class CapacityAdmissionController:
    def __init__(self, machine: LifecycleStateMachine) -> None:
        self.machine = machine
        machine.entry_gate = self.ensure_room

    def current_occupancy(self, state: BranchState) -> int:
        return count_occupancy(state.branch, state)

    def can_admit(self, state: BranchState) -> bool:
        return self.current_occupancy(state) < state.branch.max_occupancy

    def ensure_room(self, state: BranchState) -> None:
        occupancy = self.current_occupancy(state)
        if occupancy >= state.branch.max_occupancy:
            logger.info("branch %s at capacity (%d/%d)", state.branch.id, occupancy, state.branch.max_occupancy)
            raise AtCapacity(f"branch {state.branch.id} is at capacity ({occupancy}/{state.branch.max_occupancy})")

    def admit(self, state: BranchState, ticket: Ticket, actor: Actor = Actor.CUSTOMER, *, now: float | None = None) -> Ticket:
        """Move an eligible ticket into the building, or raise AtCapacity."""
        return self.machine.transition(state, ticket, TicketStatus.IN_BUILDING, actor, "confirmed entry", now=now)

    def has_free_slot(self, state: BranchState) -> bool:
        """Room for another promotion: eligible tickets hold a slot until they enter or are demoted."""
        reserved = len(state.with_status(TicketStatus.ELIGIBLE_FOR_ENTRY))
        return self.current_occupancy(state) + reserved < state.branch.max_occupancy

    def promote_next(
        self, state: BranchState, *, now: float | None = None, exclude: Collection[str] = ()
    ) -> Promotion | None:
        """Promote the lowest-numbered waiting ticket if a slot is free.

        Safe to call after any transition: with no waiting ticket or no free
        slot it changes nothing and records no event. Tickets in `exclude`
        are passed over; a ticket demoted in the same section stays waiting.
        """
        waiting = [t for t in state.with_status(TicketStatus.REMOTE_WAITING) if t.id not in exclude]
        if not waiting or not self.can_admit(state) or not self.has_free_slot(state):
            return None

        ticket = waiting[0]
        occupancy = self.current_occupancy(state)
        rank = occupancy + 1
        self.machine.transition(
            state,
            ticket,
            TicketStatus.ELIGIBLE_FOR_ENTRY,
            Actor.SYSTEM,
            f"Capacity opened ({occupancy}->{rank})",
            now=now,
            metadata={"capacity": f"{occupancy}->{rank}"},
        )
        state.record(TicketPromoted(ticket.snapshot(), rank))
        logger.info("promoted ticket %s #%d in branch %s (rank %d)", ticket.id, ticket.queue_number, state.branch.id, rank)
        return Promotion(ticket, rank)
