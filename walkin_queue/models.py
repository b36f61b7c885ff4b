"""Tickets, branches and the audit records attached to them.

All timestamps are POSIX seconds (floats), the same clock `time.time()` gives.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TicketStatus(str, Enum):
    REMOTE_WAITING = "REMOTE_WAITING"
    ELIGIBLE_FOR_ENTRY = "ELIGIBLE_FOR_ENTRY"
    IN_BUILDING = "IN_BUILDING"
    IN_SERVICE = "IN_SERVICE"
    SERVED = "SERVED"
    COMPLETED = "COMPLETED"
    REMOVED = "REMOVED"


TERMINAL_STATUSES = frozenset({TicketStatus.SERVED, TicketStatus.COMPLETED, TicketStatus.REMOVED})
FINISHED_STATUSES = frozenset({TicketStatus.SERVED, TicketStatus.COMPLETED})


class Actor(str, Enum):
    SYSTEM = "system"
    RECEPTION = "reception"
    TELLER = "teller"
    CUSTOMER = "customer"


class CommsChannel(str, Enum):
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"


class ServiceCategory(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    LOAN = "LOAN"
    ACCOUNT_OPENING = "ACCOUNT_OPENING"
    ACCOUNT_INQUIRY = "ACCOUNT_INQUIRY"
    OTHER = "OTHER"


@dataclass(frozen=True)
class CustomerInfo:
    """Contact details captured at join time."""

    name: str
    phone: str = ""
    channel: CommsChannel = CommsChannel.SMS
    member_id: str | None = None

    @classmethod
    def from_message(cls, msg: dict[str, Any]) -> "CustomerInfo":
        name = str(msg.get("name", "")).strip()
        if not name:
            raise ValueError("name required")
        member_id = msg.get("member_id")
        return cls(
            name=name,
            phone=str(msg.get("phone", "")),
            channel=CommsChannel(str(msg.get("channel", CommsChannel.SMS.value))),
            member_id=str(member_id) if member_id else None,
        )


@dataclass(frozen=True)
class StatusTransition:
    """One committed status change. Never edited once appended."""

    ticket_id: str
    from_status: TicketStatus | None
    to_status: TicketStatus
    timestamp: float
    triggered_by: Actor
    reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "from_status": None if self.from_status is None else self.from_status.value,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp,
            "triggered_by": self.triggered_by.value,
            "reason": self.reason,
            "metadata": dict(self.metadata),
        }


@dataclass
class Branch:
    """Per-branch policy. One coordinator owns the ticket set of each branch."""

    id: str
    max_occupancy: int
    grace_period_seconds: float
    average_service_minutes: float = 7.0
    exclude_in_service_from_occupancy: bool = False
    is_paused: bool = False
    name: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("branch id required")
        if self.max_occupancy <= 0:
            raise ValueError("max_occupancy must be > 0")
        if self.grace_period_seconds <= 0:
            raise ValueError("grace_period_seconds must be > 0")
        if self.average_service_minutes < 0:
            raise ValueError("average_service_minutes must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Branch":
        return cls(
            id=str(data["id"]),
            max_occupancy=int(data["max_occupancy"]),
            grace_period_seconds=float(data["grace_period_seconds"]),
            average_service_minutes=float(data.get("average_service_minutes", 7.0)),
            exclude_in_service_from_occupancy=bool(data.get("exclude_in_service_from_occupancy", False)),
            is_paused=bool(data.get("is_paused", False)),
            name=str(data.get("name", "")),
        )


@dataclass
class Ticket:
    """A customer's place in one branch's queue."""

    id: str
    branch_id: str
    queue_number: int
    customer: CustomerInfo
    joined_at: float
    status: TicketStatus = TicketStatus.REMOTE_WAITING
    service_category: ServiceCategory | None = None

    # Set only while IN_SERVICE.
    teller_id: str | None = None
    counter_id: str | None = None

    eligible_for_entry_at: float | None = None
    entered_building_at: float | None = None
    left_building_at: float | None = None
    service_started_at: float | None = None
    service_ended_at: float | None = None
    bumped_at: float | None = None
    wait_time_minutes: int | None = None
    is_no_show: bool = False
    feedback_stars: int | None = None
    notes: list[str] = field(default_factory=list)

    status_history: list[StatusTransition] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> "Ticket":
        """Detached copy, safe to hand to other threads."""
        return copy.deepcopy(self)

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "queue_number": self.queue_number,
            "status": self.status.value,
            "name": self.customer.name,
            "phone": self.customer.phone,
            "channel": self.customer.channel.value,
            "member_id": self.customer.member_id,
            "service_category": None if self.service_category is None else self.service_category.value,
            "teller_id": self.teller_id,
            "counter_id": self.counter_id,
            "joined_at": self.joined_at,
            "eligible_for_entry_at": self.eligible_for_entry_at,
            "entered_building_at": self.entered_building_at,
            "left_building_at": self.left_building_at,
            "service_started_at": self.service_started_at,
            "service_ended_at": self.service_ended_at,
            "bumped_at": self.bumped_at,
            "wait_time_minutes": self.wait_time_minutes,
            "is_no_show": self.is_no_show,
            "feedback_stars": self.feedback_stars,
            "notes": list(self.notes),
            "status_history": [t.to_message() for t in self.status_history],
        }
