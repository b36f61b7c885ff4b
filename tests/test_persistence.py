import pytest

from conftest import join
from walkin_queue.models import TicketStatus
from walkin_queue.persistence import InMemoryTicketStore, PersistenceWriter


class RecordingStore:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.saved = []

    def save_ticket(self, ticket):
        if self.failures:
            self.failures -= 1
            raise IOError("database unavailable")
        self.saved.append((ticket.id, ticket.status))


def test_writer_persists_in_commit_order(make_coordinator):
    c = make_coordinator(max_occupancy=1)
    store = RecordingStore()
    writer = PersistenceWriter(store)
    c.subscribe(writer, ordered=True)
    writer.start()

    t = join(c, "Ada")
    c.confirm_entry(t.id)
    writer.flush()
    writer.stop()

    assert store.saved == [
        (t.id, TicketStatus.REMOTE_WAITING),
        (t.id, TicketStatus.ELIGIBLE_FOR_ENTRY),
        (t.id, TicketStatus.IN_BUILDING),
    ]


def test_writer_retries_then_succeeds(make_coordinator):
    c = make_coordinator()
    store = RecordingStore(failures=2)
    writer = PersistenceWriter(store, max_attempts=3, retry_delay=0)
    c.subscribe(writer, ordered=True)
    writer.start()

    t = join(c, "Ada")
    writer.flush()
    writer.stop()

    assert store.saved[0] == (t.id, TicketStatus.REMOTE_WAITING)
    assert writer.dropped == 0


def test_writer_gives_up_without_touching_state(make_coordinator):
    c = make_coordinator()
    store = RecordingStore(failures=100)
    writer = PersistenceWriter(store, max_attempts=2, retry_delay=0)
    c.subscribe(writer, ordered=True)
    writer.start()

    t = join(c, "Ada")
    writer.flush()
    writer.stop()

    assert store.saved == []
    assert writer.dropped == 2
    assert c.get_ticket(t.id).status is TicketStatus.ELIGIBLE_FOR_ENTRY


def test_in_memory_store_keeps_latest_snapshot(make_coordinator):
    c = make_coordinator()
    store = InMemoryTicketStore()
    writer = PersistenceWriter(store)
    c.subscribe(writer, ordered=True)
    writer.start()

    t = join(c, "Ada")
    c.confirm_entry(t.id)
    writer.flush()
    writer.stop()

    assert store.get(t.id).status is TicketStatus.IN_BUILDING
    assert store.writes == 3


def test_writer_requires_attempts():
    with pytest.raises(ValueError):
        PersistenceWriter(InMemoryTicketStore(), max_attempts=0)
