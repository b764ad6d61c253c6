import itertools

import pytest

from lending.domain.events import CopyStatusChanged
from lending.domain.exceptions import (
    BusinessRule, BusinessRuleViolation, Conflict, InvalidTransition, NotFound
)
from lending.domain.services import CopyRegistry, TRANSITIONS, can_transition
from lending.domain.value_objects import CopyCondition, CopyStatus

ALLOWED = {
    (CopyStatus.AVAILABLE, CopyStatus.BORROWED),
    (CopyStatus.AVAILABLE, CopyStatus.RESERVED),
    (CopyStatus.AVAILABLE, CopyStatus.MAINTENANCE),
    (CopyStatus.BORROWED, CopyStatus.AVAILABLE),
    (CopyStatus.BORROWED, CopyStatus.RESERVED),
    (CopyStatus.BORROWED, CopyStatus.DAMAGED),
    (CopyStatus.RESERVED, CopyStatus.BORROWED),
    (CopyStatus.RESERVED, CopyStatus.AVAILABLE),
    (CopyStatus.MAINTENANCE, CopyStatus.AVAILABLE),
    (CopyStatus.DAMAGED, CopyStatus.MAINTENANCE),
    (CopyStatus.DAMAGED, CopyStatus.LOST),
}


@pytest.fixture
def registry(clock):
    return CopyRegistry(clock)


@pytest.fixture
def copy_id(store, registry):
    with store.unit_of_work() as uow:
        return registry.add_copy(uow, book_id=7, copy_number=1).copy_id


@pytest.mark.parametrize("from_status,to_status", list(itertools.product(CopyStatus, CopyStatus)))
def test_transition_table(from_status, to_status):
    assert can_transition(from_status, to_status) == ((from_status, to_status) in ALLOWED)


def test_explicitly_forbidden_edges():
    assert CopyStatus.AVAILABLE not in TRANSITIONS[CopyStatus.LOST]
    assert CopyStatus.LOST not in TRANSITIONS[CopyStatus.BORROWED]


def test_try_transition_bumps_version_and_records_event(store, registry, copy_id):
    with store.unit_of_work() as uow:
        copy = registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED, 1)
        events = list(uow.events)

    assert copy.status == CopyStatus.BORROWED
    assert copy.version == 2
    assert len(events) == 1
    assert isinstance(events[0], CopyStatusChanged)
    assert (events[0].from_status, events[0].to_status) == (CopyStatus.AVAILABLE, CopyStatus.BORROWED)


def test_stale_version_conflicts_without_writing(store, registry, copy_id):
    with store.unit_of_work() as uow:
        stale = registry.get(uow, copy_id)
    with store.unit_of_work() as uow:
        registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.MAINTENANCE, stale.version)
        registry.try_transition(uow, copy_id, CopyStatus.MAINTENANCE, CopyStatus.AVAILABLE, stale.version + 1)

    with store.unit_of_work() as uow:
        with pytest.raises(Conflict) as excinfo:
            registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED, stale.version)
        current = registry.get(uow, copy_id)

    assert excinfo.value.actual == {"status": "AVAILABLE", "version": 3}
    assert current.status == CopyStatus.AVAILABLE
    assert current.version == 3


def test_wrong_expected_status_conflicts(store, registry, copy_id):
    with store.unit_of_work() as uow:
        with pytest.raises(Conflict):
            registry.try_transition(uow, copy_id, CopyStatus.RESERVED, CopyStatus.BORROWED, 1)


def test_illegal_edge_is_rejected_before_writing(store, registry, copy_id):
    with store.unit_of_work() as uow:
        with pytest.raises(InvalidTransition):
            registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.LOST, 1)
        assert registry.get(uow, copy_id).version == 1


def test_borrowed_copy_cannot_go_straight_to_lost(store, registry, copy_id):
    with store.unit_of_work() as uow:
        registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED, 1)
        with pytest.raises(InvalidTransition):
            registry.transition(uow, copy_id, CopyStatus.LOST)
        registry.transition(uow, copy_id, CopyStatus.DAMAGED)
        lost = registry.transition(uow, copy_id, CopyStatus.LOST)
    assert lost.status == CopyStatus.LOST
    assert lost.version == 4


def test_unknown_copy(store, registry):
    with store.unit_of_work() as uow:
        with pytest.raises(NotFound):
            registry.get(uow, 999)


def test_copy_number_unique_per_book(store, registry, copy_id):
    with store.unit_of_work() as uow:
        with pytest.raises(BusinessRuleViolation) as excinfo:
            registry.add_copy(uow, book_id=7, copy_number=1)
        other = registry.add_copy(uow, book_id=8, copy_number=1)
    assert excinfo.value.rule == BusinessRule.DUPLICATE_COPY_NUMBER
    assert other.copy_number == 1


def test_borrowed_copy_cannot_be_withdrawn(store, registry, copy_id):
    with store.unit_of_work() as uow:
        copy = registry.try_transition(uow, copy_id, CopyStatus.AVAILABLE, CopyStatus.BORROWED, 1)
        with pytest.raises(BusinessRuleViolation) as excinfo:
            registry.delete_copy(uow, copy_id, copy.version)
    assert excinfo.value.rule == BusinessRule.COPY_IN_CIRCULATION


def test_withdrawn_copy_disappears(store, registry, copy_id):
    with store.unit_of_work() as uow:
        registry.delete_copy(uow, copy_id, 1)
    with store.unit_of_work() as uow:
        with pytest.raises(NotFound):
            registry.get(uow, copy_id)
        assert registry.find_available(uow, 7) is None


def test_condition_and_location_updates_bump_version(store, registry, copy_id):
    with store.unit_of_work() as uow:
        registry.update_condition(uow, copy_id, CopyCondition.POOR)
        moved = registry.update_location(uow, copy_id, "Annex/1/A-02")

    assert moved.condition == CopyCondition.POOR
    assert moved.location == "Annex/1/A-02"
    assert moved.version == 3
    assert moved.is_available
