from __future__ import annotations

# Queue-number bookkeeping for one branch.
#
# Only active (non-terminal) tickets take part in ordering. Terminal tickets
# keep whatever number they had when they finished.

from typing import Iterable

from .models import Ticket


def active_tickets(tickets: Iterable[Ticket]) -> list[Ticket]:
    return [t for t in tickets if not t.is_terminal]


def queue_order(tickets: Iterable[Ticket]) -> list[Ticket]:
    """Sort by queue number; join time and id keep the sort total."""
    return sorted(tickets, key=lambda t: (t.queue_number, t.joined_at, t.id))


class PositionSequencer:
    def next_number(self, tickets: Iterable[Ticket]) -> int:
        """`max(active queue numbers) + 1`, or 1 for an empty branch."""
        return max((t.queue_number for t in active_tickets(tickets)), default=0) + 1

    def holder_of(self, tickets: Iterable[Ticket], number: int, *, exclude: Ticket | None = None) -> Ticket | None:
        for t in active_tickets(tickets):
            if t.queue_number == number and t is not exclude:
                return t
        return None

    def move_back(self, tickets: list[Ticket], ticket: Ticket, penalty: int) -> list[Ticket]:
        """Push `ticket` back by `penalty` places.

        If another active ticket holds the target number the two swap;
        otherwise the ticket goes to the end of the queue. Returns every ticket
        whose number changed.
        """
        if penalty <= 0:
            raise ValueError("penalty must be > 0")
        target = ticket.queue_number + penalty
        holder = self.holder_of(tickets, target, exclude=ticket)
        if holder is not None:
            holder.queue_number, ticket.queue_number = ticket.queue_number, holder.queue_number
            return [ticket, holder]
        ticket.queue_number = max(t.queue_number for t in active_tickets(tickets)) + 1
        return [ticket]

    def compact(self, tickets: Iterable[Ticket]) -> list[Ticket]:
        """Renumber active tickets 1..N keeping their relative order.

        Returns the tickets whose number changed.
        """
        changed: list[Ticket] = []
        for number, t in enumerate(queue_order(active_tickets(tickets)), start=1):
            if t.queue_number != number:
                t.queue_number = number
                changed.append(t)
        return changed
