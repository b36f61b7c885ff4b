"""Typed command errors and the shared error envelope.

Every refusal the coordinator can produce is a `QueueError` subclass with a
stable `code`. None of them are fatal: the caller decides what to show.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    code = "queue_error"

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, str(self))


class InvalidTransition(QueueError):
    """Target status unreachable from the current one for this actor."""

    code = "invalid_transition"


class AtCapacity(QueueError):
    """Entry refused because the building is full."""

    code = "at_capacity"


class TicketNotFound(QueueError):
    code = "ticket_not_found"


class StaleOperation(QueueError):
    """The ticket already reached a terminal status."""

    code = "stale_operation"


class FeedbackNotAllowed(QueueError):
    code = "feedback_not_allowed"


class UnknownBranch(QueueError):
    code = "unknown_branch"
