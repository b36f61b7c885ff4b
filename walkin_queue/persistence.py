from __future__ import annotations

# Best-effort persistence of ticket snapshots.
#
# In-memory state is authoritative. The writer receives `TicketUpdated`
# events as an ordered subscriber (inside the branch lock, enqueue only) and a
# single worker thread drains them FIFO, so stored snapshots follow commit
# order. Write failures are retried, then logged and dropped.

import logging
import queue
import threading
import time
from typing import Protocol

from .events import Event, TicketUpdated
from .models import Ticket

logger = logging.getLogger(__name__)


class TicketStore(Protocol):
    def save_ticket(self, ticket: Ticket) -> None: ...


class InMemoryTicketStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tickets: dict[str, Ticket] = {}
        self.writes = 0

    def save_ticket(self, ticket: Ticket) -> None:
        with self._lock:
            self._tickets[ticket.id] = ticket
            self.writes += 1

    def get(self, ticket_id: str) -> Ticket | None:
        with self._lock:
            return self._tickets.get(ticket_id)


class PersistenceWriter:
    def __init__(self, store: TicketStore, *, max_attempts: int = 3, retry_delay: float = 0.2) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self.store = store
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self._inbox: "queue.Queue[Ticket | None]" = queue.Queue()
        self._thread: threading.Thread | None = None
        self.dropped = 0

    def __call__(self, event: Event) -> None:
        if isinstance(event, TicketUpdated):
            self._inbox.put_nowait(event.ticket)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._loop, name="persistence-writer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Flush pending writes and stop the worker."""
        t = self._thread
        if t is None or not t.is_alive():
            return
        self._inbox.put(None)
        t.join(timeout=timeout)

    def flush(self) -> None:
        """Block until every queued snapshot has been handled."""
        self._inbox.join()

    def _loop(self) -> None:
        while True:
            ticket = self._inbox.get()
            try:
                if ticket is None:
                    return
                self._write(ticket)
            finally:
                self._inbox.task_done()

    def _write(self, ticket: Ticket) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.store.save_ticket(ticket)
                return
            except Exception as e:
                if attempt < self.max_attempts:
                    logger.warning("saving ticket %s failed (attempt %d/%d): %s", ticket.id, attempt, self.max_attempts, e)
                    time.sleep(self.retry_delay)
        self.dropped += 1
        logger.error("giving up on ticket %s after %d attempts", ticket.id, self.max_attempts)
