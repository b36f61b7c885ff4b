import pytest

from conftest import make_ticket
from walkin_queue.models import TicketStatus
from walkin_queue.sequencer import PositionSequencer


def test_next_number_on_empty_branch_is_one():
    assert PositionSequencer().next_number([]) == 1


def test_next_number_ignores_terminal_tickets():
    tickets = [make_ticket("a", 3), make_ticket("b", 7, status=TicketStatus.SERVED)]
    assert PositionSequencer().next_number(tickets) == 4


def test_compact_renumbers_keeping_order():
    tickets = [make_ticket("a", 4), make_ticket("b", 1), make_ticket("c", 9), make_ticket("d", 1, status=TicketStatus.REMOVED)]

    changed = PositionSequencer().compact(tickets)

    assert {t.id: t.queue_number for t in tickets} == {"a": 2, "b": 1, "c": 3, "d": 1}
    assert {t.id for t in changed} == {"a", "c"}


def test_move_back_swaps_with_holder():
    a, b, c = make_ticket("a", 1), make_ticket("b", 3), make_ticket("c", 5)

    changed = PositionSequencer().move_back([a, b, c], a, 4)

    assert (a.queue_number, c.queue_number) == (5, 1)
    assert changed == [a, c]


def test_move_back_goes_to_end_without_holder():
    a, b = make_ticket("a", 1), make_ticket("b", 2)

    PositionSequencer().move_back([a, b], a, 4)

    assert a.queue_number == 3


def test_move_back_requires_positive_penalty():
    a = make_ticket("a", 1)
    with pytest.raises(ValueError):
        PositionSequencer().move_back([a], a, 0)
