from __future__ import annotations

# Per-branch owned ticket set.
#
# A `BranchState` is only read or mutated while its `lock` is held; the
# coordinator hands it out through `Coordinator.serialized(branch_id)`.
# Events produced during a locked section are staged in `outbox` and
# delivered when the section ends.

import threading
from typing import Iterator

from .audit import AuditTrail
from .events import Event, TicketUpdated
from .models import Branch, Ticket, TicketStatus
from .sequencer import active_tickets, queue_order


class BranchState:
    def __init__(self, branch: Branch) -> None:
        self.branch = branch
        self.audit = AuditTrail()
        self.lock = threading.RLock()
        self.outbox: list[Event] = []
        # Nesting level of serialized sections currently holding `lock`.
        self.depth = 0
        self._tickets: dict[str, Ticket] = {}

    def __iter__(self) -> Iterator[Ticket]:
        return iter(self._tickets.values())

    def __len__(self) -> int:
        return len(self._tickets)

    def add(self, ticket: Ticket) -> None:
        if ticket.id in self._tickets:
            raise ValueError(f"duplicate ticket id {ticket.id}")
        self._tickets[ticket.id] = ticket

    def get(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    def tickets(self) -> list[Ticket]:
        return list(self._tickets.values())

    def active(self) -> list[Ticket]:
        return active_tickets(self._tickets.values())

    def with_status(self, status: TicketStatus) -> list[Ticket]:
        """Tickets in `status`, in queue order."""
        return queue_order(t for t in self._tickets.values() if t.status is status)

    def record(self, event: Event) -> None:
        self.outbox.append(event)

    def touch(self, tickets: list[Ticket]) -> None:
        for t in tickets:
            self.record(TicketUpdated(t.snapshot()))

    def drain(self) -> list[Event]:
        events, self.outbox = self.outbox, []
        return events
