import pytest

from conftest import make_ticket
from walkin_queue.admission import CapacityAdmissionController
from walkin_queue.errors import AtCapacity, InvalidTransition, StaleOperation
from walkin_queue.events import OccupancyChanged, TicketUpdated
from walkin_queue.models import Actor, Branch, TicketStatus
from walkin_queue.repository import BranchState
from walkin_queue.state import LifecycleStateMachine

S = TicketStatus


def _setup(max_occupancy=2, **branch_kwargs):
    machine = LifecycleStateMachine(clock=lambda: 100.0)
    CapacityAdmissionController(machine)
    state = BranchState(Branch(id="B1", max_occupancy=max_occupancy, grace_period_seconds=600, **branch_kwargs))
    return machine, state


def test_state_machine_allows_expected_transitions():
    m = LifecycleStateMachine
    assert m.can_transition(S.REMOTE_WAITING, S.ELIGIBLE_FOR_ENTRY, Actor.SYSTEM)
    assert m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.IN_BUILDING, Actor.CUSTOMER)
    assert m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.IN_BUILDING, Actor.RECEPTION)
    assert m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING, Actor.SYSTEM)
    assert m.can_transition(S.IN_BUILDING, S.REMOTE_WAITING, Actor.RECEPTION)
    assert m.can_transition(S.IN_BUILDING, S.IN_SERVICE, Actor.TELLER)
    assert m.can_transition(S.IN_SERVICE, S.SERVED, Actor.TELLER)
    assert m.can_transition(S.IN_SERVICE, S.COMPLETED, Actor.RECEPTION)
    assert m.can_transition(S.IN_SERVICE, S.REMOVED, Actor.CUSTOMER)


def test_state_machine_blocks_invalid_transitions():
    m = LifecycleStateMachine
    assert not m.can_transition(S.REMOTE_WAITING, S.ELIGIBLE_FOR_ENTRY, Actor.RECEPTION)
    assert not m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.IN_SERVICE, Actor.TELLER)
    assert not m.can_transition(S.IN_BUILDING, S.IN_SERVICE, Actor.CUSTOMER)
    assert not m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING, Actor.RECEPTION)
    assert not m.can_transition(S.SERVED, S.REMOVED, Actor.RECEPTION)
    assert not m.can_transition(S.REMOVED, S.REMOTE_WAITING, Actor.SYSTEM)


def test_no_show_transitions_are_staff_only():
    m = LifecycleStateMachine
    assert m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.REMOTE_WAITING, Actor.RECEPTION, no_show=True)
    assert m.can_transition(S.REMOTE_WAITING, S.REMOVED, Actor.TELLER, no_show=True)
    assert not m.can_transition(S.ELIGIBLE_FOR_ENTRY, S.REMOVED, Actor.CUSTOMER, no_show=True)
    assert not m.can_transition(S.IN_BUILDING, S.REMOVED, Actor.RECEPTION, no_show=True)


def test_transition_rejects_and_leaves_ticket_untouched():
    machine, state = _setup()
    t = make_ticket("t1", 1)
    state.add(t)

    with pytest.raises(InvalidTransition):
        machine.transition(state, t, S.IN_SERVICE, Actor.TELLER)

    assert t.status is S.REMOTE_WAITING
    assert t.status_history == []
    assert state.outbox == []


def test_terminal_ticket_is_stale():
    machine, state = _setup()
    t = make_ticket("t1", 1, status=S.SERVED)
    state.add(t)

    with pytest.raises(StaleOperation):
        machine.transition(state, t, S.REMOVED, Actor.RECEPTION)


def test_entry_refused_at_capacity_without_audit_entry():
    machine, state = _setup(max_occupancy=1)
    state.add(make_ticket("inside", 1, status=S.IN_BUILDING))
    t = make_ticket("t2", 2, status=S.ELIGIBLE_FOR_ENTRY, eligible_for_entry_at=50.0)
    state.add(t)

    with pytest.raises(AtCapacity):
        machine.transition(state, t, S.IN_BUILDING, Actor.CUSTOMER)

    assert t.status is S.ELIGIBLE_FOR_ENTRY
    assert len(state.audit) == 0


def test_service_start_and_finish_manage_teller_assignment():
    machine, state = _setup()
    t = make_ticket("t1", 1, status=S.IN_BUILDING, entered_building_at=100.0 - 25 * 60)
    state.add(t)

    machine.transition(state, t, S.IN_SERVICE, Actor.TELLER, teller_id="Teller-1", counter_id="C2")
    assert (t.teller_id, t.counter_id, t.service_started_at) == ("Teller-1", "C2", 100.0)
    assert t.status_history[-1].metadata == {"teller_id": "Teller-1", "counter_id": "C2"}

    machine.transition(state, t, S.SERVED, Actor.TELLER)
    assert t.teller_id is None and t.counter_id is None
    assert t.service_ended_at == 100.0
    assert t.wait_time_minutes == 25


def test_transition_stages_update_and_occupancy_events():
    machine, state = _setup()
    t = make_ticket("t1", 1, status=S.ELIGIBLE_FOR_ENTRY, eligible_for_entry_at=90.0)
    state.add(t)

    machine.transition(state, t, S.IN_BUILDING, Actor.CUSTOMER)

    updated, occupancy = state.drain()
    assert isinstance(updated, TicketUpdated)
    assert updated.ticket.status is S.IN_BUILDING
    assert updated.ticket is not t
    assert occupancy == OccupancyChanged("B1", 1)


def test_mark_as_left_stamps_left_building():
    machine, state = _setup()
    t = make_ticket("t1", 1, status=S.IN_BUILDING)
    state.add(t)

    machine.transition(state, t, S.REMOTE_WAITING, Actor.RECEPTION, "stepped out")

    assert t.left_building_at == 100.0
    assert t.status_history[-1].reason == "stepped out"


def test_wait_time_rounds_half_minutes_up():
    machine, state = _setup()
    t = make_ticket("t1", 1, status=S.IN_SERVICE, entered_building_at=100.0 - 150)
    state.add(t)

    machine.transition(state, t, S.SERVED, Actor.TELLER)

    assert t.wait_time_minutes == 3
