from __future__ import annotations

# Ticket lifecycle rules.
#
# `LifecycleStateMachine.transition` is the only place a ticket's status
# changes. It must be called with the branch lock held.

import logging
import math
import time
from typing import Callable

from .admission import count_occupancy
from .errors import InvalidTransition, StaleOperation
from .events import OccupancyChanged
from .models import (
    FINISHED_STATUSES,
    TERMINAL_STATUSES,
    Actor,
    StatusTransition,
    Ticket,
    TicketStatus,
)
from .repository import BranchState

logger = logging.getLogger(__name__)

S = TicketStatus

_STAFF = frozenset({Actor.RECEPTION, Actor.TELLER})

_TRANSITIONS: dict[tuple[TicketStatus, TicketStatus], frozenset[Actor]] = {
    (S.REMOTE_WAITING, S.ELIGIBLE_FOR_ENTRY): frozenset({Actor.SYSTEM}),
    (S.ELIGIBLE_FOR_ENTRY, S.IN_BUILDING): frozenset({Actor.CUSTOMER, Actor.RECEPTION}),
    (S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING): frozenset({Actor.SYSTEM}),
    (S.IN_BUILDING, S.REMOTE_WAITING): frozenset({Actor.RECEPTION}),
    (S.IN_BUILDING, S.IN_SERVICE): frozenset({Actor.TELLER}),
    (S.IN_SERVICE, S.SERVED): _STAFF,
    (S.IN_SERVICE, S.COMPLETED): _STAFF,
}

# Cancellation: any non-terminal state may be removed.
for _status in TicketStatus:
    if _status not in TERMINAL_STATUSES:
        _TRANSITIONS[(_status, S.REMOVED)] = frozenset({Actor.CUSTOMER, Actor.RECEPTION, Actor.TELLER})

# Manual no-show: the ticket is flagged and either removed or sent back.
_NO_SHOW_TRANSITIONS: dict[tuple[TicketStatus, TicketStatus], frozenset[Actor]] = {
    (S.ELIGIBLE_FOR_ENTRY, S.REMOVED): _STAFF,
    (S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING): _STAFF,
    (S.REMOTE_WAITING, S.REMOVED): _STAFF,
    (S.REMOTE_WAITING, S.REMOTE_WAITING): _STAFF,
}

# Entries only the admission controller and grace monitor may commit.
SYSTEM_ONLY = frozenset({(S.REMOTE_WAITING, S.ELIGIBLE_FOR_ENTRY), (S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING)})


class LifecycleStateMachine:
    """Validate and apply ticket status transitions."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        # Installed by CapacityAdmissionController; raises AtCapacity.
        self.entry_gate: Callable[[BranchState], None] | None = None

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.REMOTE_WAITING

    @staticmethod
    def can_transition(
        current: TicketStatus, target: TicketStatus, actor: Actor, *, no_show: bool = False
    ) -> bool:
        table = _NO_SHOW_TRANSITIONS if no_show else _TRANSITIONS
        return actor in table.get((current, target), frozenset())

    def transition(
        self,
        state: BranchState,
        ticket: Ticket,
        target: TicketStatus,
        actor: Actor,
        reason: str | None = None,
        *,
        now: float | None = None,
        no_show: bool = False,
        teller_id: str | None = None,
        counter_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> Ticket:
        if ticket.is_terminal:
            raise StaleOperation(f"ticket {ticket.id} is already {ticket.status.value}")
        current = ticket.status
        if not self.can_transition(current, target, actor, no_show=no_show):
            raise InvalidTransition(
                f"{actor.value} cannot move ticket {ticket.id} from {current.value} to {target.value}"
            )
        if target is S.IN_BUILDING and self.entry_gate is not None:
            self.entry_gate(state)

        ts = self.clock() if now is None else now
        before = count_occupancy(state.branch, state)
        meta = dict(metadata or {})

        if target is S.ELIGIBLE_FOR_ENTRY:
            ticket.eligible_for_entry_at = ts
        elif target is S.IN_BUILDING:
            ticket.entered_building_at = ts
        elif target is S.REMOTE_WAITING:
            if current is S.IN_BUILDING:
                ticket.left_building_at = ts
            ticket.eligible_for_entry_at = None
        elif target is S.IN_SERVICE:
            ticket.service_started_at = ts
            ticket.teller_id = teller_id
            ticket.counter_id = counter_id
            if teller_id:
                meta["teller_id"] = teller_id
            if counter_id:
                meta["counter_id"] = counter_id
        elif target in FINISHED_STATUSES:
            ticket.service_ended_at = ts
            if ticket.entered_building_at is not None:
                ticket.wait_time_minutes = math.floor((ts - ticket.entered_building_at) / 60 + 0.5)

        if target is not S.IN_SERVICE:
            ticket.teller_id = None
            ticket.counter_id = None
        if no_show:
            ticket.is_no_show = True
            ticket.bumped_at = ts

        ticket.status = target
        state.audit.append(
            ticket,
            StatusTransition(
                ticket_id=ticket.id,
                from_status=current,
                to_status=target,
                timestamp=ts,
                triggered_by=actor,
                reason=reason,
                metadata=meta,
            ),
        )
        logger.debug(
            "ticket %s #%d %s -> %s by %s", ticket.id, ticket.queue_number, current.value, target.value, actor.value
        )

        state.touch([ticket])
        after = count_occupancy(state.branch, state)
        if after != before:
            state.record(OccupancyChanged(state.branch.id, after))
        return ticket
