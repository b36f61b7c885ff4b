import pytest

from walkin_queue.coordinator import Coordinator
from walkin_queue.models import Branch, CustomerInfo, Ticket, TicketStatus


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock(0.0)


@pytest.fixture
def make_coordinator(clock):
    def _make(**branch_kwargs):
        params = {"id": "B1", "max_occupancy": 2, "grace_period_seconds": 600}
        params.update(branch_kwargs)
        return Coordinator([Branch(**params)], clock=clock)

    return _make


def join(coordinator, name, branch_id="B1"):
    return coordinator.join_queue(branch_id, CustomerInfo(name=name, phone="555-0100"))


def make_ticket(ticket_id, number, status=TicketStatus.REMOTE_WAITING, branch_id="B1", **kwargs):
    return Ticket(
        id=ticket_id,
        branch_id=branch_id,
        queue_number=number,
        customer=CustomerInfo(name=ticket_id),
        joined_at=float(number),
        status=status,
        **kwargs,
    )


def assert_invariants(coordinator, branch_id="B1"):
    branch = coordinator.branch(branch_id)
    tickets = coordinator.tickets(branch_id)
    assert coordinator.occupancy(branch_id) <= branch.max_occupancy

    active = [t.queue_number for t in tickets if not t.is_terminal]
    assert len(active) == len(set(active))

    for t in tickets:
        assert t.status_history[-1].to_status is t.status
        if t.status is not TicketStatus.IN_SERVICE:
            assert t.teller_id is None and t.counter_id is None
