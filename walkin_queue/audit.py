from __future__ import annotations

# Append-only transition log.
#
# Each ticket carries its own history (`Ticket.status_history`); the trail
# also keeps the branch-wide commit order so a reporting collaborator can read
# every transition without walking tickets. There is no update or delete.

from .models import StatusTransition, Ticket


class AuditTrail:
    def __init__(self) -> None:
        self._entries: list[StatusTransition] = []

    def append(self, ticket: Ticket, transition: StatusTransition) -> None:
        if transition.ticket_id != ticket.id:
            raise ValueError("transition belongs to another ticket")
        history = ticket.status_history
        if history and transition.from_status != history[-1].to_status:
            raise ValueError(
                f"history gap for {ticket.id}: last={history[-1].to_status}, from={transition.from_status}"
            )
        history.append(transition)
        self._entries.append(transition)

    def history(self, ticket_id: str) -> tuple[StatusTransition, ...]:
        return tuple(t for t in self._entries if t.ticket_id == ticket_id)

    def entries(self) -> tuple[StatusTransition, ...]:
        """All transitions of the branch in commit order (read-only view)."""
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
