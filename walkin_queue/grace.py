from __future__ import annotations

# Grace-period enforcement.
#
# An eligible ticket that has not confirmed entry within the branch's grace
# period is demoted: pushed back `penalty` places, returned to REMOTE_WAITING,
# and the queue is compacted. The sweep runs under the same per-branch lock as
# manual commands and re-reads each ticket's status inside it, so a
# confirmation that committed first always wins.

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Collection

from .events import TicketDemoted
from .models import Actor, Branch, Ticket, TicketStatus

if TYPE_CHECKING:
    from .coordinator import Coordinator
    from .repository import BranchState

logger = logging.getLogger(__name__)

DEFAULT_DEMOTION_PENALTY = 4


class GracePeriodMonitor:
    def __init__(
        self,
        coordinator: Coordinator,
        *,
        penalty: int = DEFAULT_DEMOTION_PENALTY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if penalty <= 0:
            raise ValueError("penalty must be > 0")
        self.coordinator = coordinator
        self.penalty = penalty
        self.clock = clock

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @staticmethod
    def is_expired(branch: Branch, ticket: Ticket, now: float) -> bool:
        if ticket.status is not TicketStatus.ELIGIBLE_FOR_ENTRY or ticket.eligible_for_entry_at is None:
            return False
        return now - ticket.eligible_for_entry_at > branch.grace_period_seconds

    def sweep(self, now: float | None = None) -> list[Ticket]:
        """Demote every expired eligible ticket in every branch.

        A failure on one ticket is logged and the sweep moves on.
        Returns snapshots of the demoted tickets.
        """
        ts = self.clock() if now is None else now
        demoted: list[Ticket] = []
        for branch_id in self.coordinator.branch_ids():
            with self.coordinator.serialized(branch_id) as state:
                swept: set[str] = set()
                for ticket in state.with_status(TicketStatus.ELIGIBLE_FOR_ENTRY):
                    try:
                        if self.is_expired(state.branch, ticket, ts):
                            swept.add(ticket.id)
                            self.demote(state, ticket, now=ts, exclude=swept)
                            demoted.append(ticket.snapshot())
                    except Exception:
                        logger.exception("failed to demote ticket %s in branch %s", ticket.id, branch_id)
        return demoted

    def demote(
        self,
        state: BranchState,
        ticket: Ticket,
        *,
        now: float,
        actor: Actor = Actor.SYSTEM,
        reason: str = "grace period expired",
        no_show: bool = False,
        exclude: Collection[str] = (),
    ) -> Ticket:
        """Send a ticket back to REMOTE_WAITING with the position penalty.

        The freed slot goes to the next waiting ticket other than this one
        and those in `exclude`. Must be called with the branch lock held.
        """
        coordinator = self.coordinator
        coordinator.machine.transition(
            state, ticket, TicketStatus.REMOTE_WAITING, actor, reason, now=now, no_show=no_show
        )
        ticket.bumped_at = now

        changed = coordinator.sequencer.move_back(state.tickets(), ticket, self.penalty)
        changed += coordinator.sequencer.compact(state)
        state.touch(list({id(t): t for t in changed}.values()))
        state.record(TicketDemoted(ticket.snapshot()))
        logger.info("demoted ticket %s to #%d in branch %s (%s)", ticket.id, ticket.queue_number, state.branch.id, reason)

        coordinator.admission.promote_next(state, now=now, exclude={ticket.id, *exclude})
        return ticket

    # -------------------- background ticker --------------------

    def start(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if self._thread and self._thread.is_alive():
            return
        for branch_id in self.coordinator.branch_ids():
            grace = self.coordinator.branch(branch_id).grace_period_seconds
            if interval > grace / 2:
                logger.warning("sweep interval %.1fs exceeds half the grace period of branch %s", interval, branch_id)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, args=(interval,), name="grace-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=1.0)

    def _loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                # Keep ticking even if an occasional sweep fails.
                logger.exception("grace-period sweep failed")
            self._stop_event.wait(interval)
