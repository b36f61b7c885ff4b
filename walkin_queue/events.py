from __future__ import annotations

# Events emitted for downstream collaborators.
#
# Two kinds of subscribers:
# - ordered: called while the branch is still locked, in commit order. They
#   must not block (the persistence writer only enqueues).
# - plain: called after the lock is released (notifications, MQTT publish).
#
# A failing subscriber is logged and skipped; it never undoes a transition.

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

from .models import Ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketUpdated:
    ticket: Ticket

    @property
    def branch_id(self) -> str:
        return self.ticket.branch_id

    def to_message(self) -> dict[str, Any]:
        return {"type": "ticket_updated", "ticket": self.ticket.to_message()}


@dataclass(frozen=True)
class TicketPromoted:
    ticket: Ticket
    rank: int

    @property
    def branch_id(self) -> str:
        return self.ticket.branch_id

    def to_message(self) -> dict[str, Any]:
        return {"type": "ticket_promoted", "rank": self.rank, "ticket": self.ticket.to_message()}


@dataclass(frozen=True)
class TicketDemoted:
    ticket: Ticket

    @property
    def branch_id(self) -> str:
        return self.ticket.branch_id

    def to_message(self) -> dict[str, Any]:
        return {"type": "ticket_demoted", "ticket": self.ticket.to_message()}


@dataclass(frozen=True)
class OccupancyChanged:
    branch_id: str
    count: int

    def to_message(self) -> dict[str, Any]:
        return {"type": "occupancy_changed", "branch_id": self.branch_id, "count": self.count}


Event = Union[TicketUpdated, TicketPromoted, TicketDemoted, OccupancyChanged]
EventHandler = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ordered: list[EventHandler] = []
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler, *, ordered: bool = False) -> None:
        with self._lock:
            (self._ordered if ordered else self._handlers).append(handler)

    def publish_ordered(self, events: Iterable[Event]) -> None:
        self._deliver(list(self._ordered), events)

    def publish(self, events: Iterable[Event]) -> None:
        self._deliver(list(self._handlers), events)

    @staticmethod
    def _deliver(handlers: list[EventHandler], events: Iterable[Event]) -> None:
        for event in events:
            for h in handlers:
                try:
                    h(event)
                except Exception:
                    logger.exception("event handler %r failed on %s", h, type(event).__name__)
