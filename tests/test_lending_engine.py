import threading

import pytest
from sqlalchemy.exc import OperationalError

from lending.domain.events import BorrowingCreated, CopyStatusChanged
from lending.domain.exceptions import (
    BusinessRule, BusinessRuleViolation, Conflict, InvalidInput, Unavailable
)
from lending.domain.value_objects import CopyStatus

from .conftest import BOOK_ID


def borrow_concurrently(engine, copy_id, member_ids):
    barrier = threading.Barrier(len(member_ids))
    outcomes = {}

    def attempt(member_id):
        barrier.wait()
        try:
            outcomes[member_id] = engine.borrow(copy_id, member_id)
        except Exception as e:
            outcomes[member_id] = e

    threads = [threading.Thread(target=attempt, args=(member_id,)) for member_id in member_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class TestConcurrentAllocation:

    @pytest.mark.parametrize("contenders", [2, 5])
    def test_exactly_one_borrower_wins(self, engine, members, copy, contenders):
        outcomes = borrow_concurrently(engine, copy.copy_id, list(range(1, contenders + 1)))

        winners = [o for o in outcomes.values() if not isinstance(o, Exception)]
        losers = [o for o in outcomes.values() if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == contenders - 1
        assert all(isinstance(e, BusinessRuleViolation) and e.rule == BusinessRule.BOOK_NOT_AVAILABLE
                   for e in losers)

        stored = engine.get_copy(copy.copy_id)
        assert stored.status == CopyStatus.BORROWED
        assert stored.version == 2
        open_loans = sum(len(engine.borrowings_for_member(m, open_only=True)) for m in outcomes)
        assert open_loans == 1


class TestConflictRetry:

    def test_conflict_is_retried_with_fresh_state(self, engine, members, copy, monkeypatch):
        real_try_transition = engine.copies.try_transition
        calls = []

        def flaky(uow, copy_id, expected_status, new_status, expected_version):
            calls.append(expected_version)
            if len(calls) == 1:
                raise Conflict("BookCopy", copy_id,
                               expected={"status": expected_status.value, "version": expected_version},
                               actual={"status": expected_status.value, "version": expected_version + 1})
            return real_try_transition(uow, copy_id, expected_status, new_status, expected_version)

        monkeypatch.setattr(engine.copies, "try_transition", flaky)
        borrowing = engine.borrow(copy.copy_id, 1)

        assert len(calls) == 2
        assert borrowing.member_id == 1
        assert engine.get_copy(copy.copy_id).status == CopyStatus.BORROWED

    def test_conflict_surfaces_after_retries(self, engine, members, copy, monkeypatch, events):
        calls = []

        def always_conflict(uow, copy_id, expected_status, new_status, expected_version):
            calls.append(expected_version)
            raise Conflict("BookCopy", copy_id, expected={}, actual={})

        monkeypatch.setattr(engine.copies, "try_transition", always_conflict)
        events.clear()

        with pytest.raises(Conflict):
            engine.borrow(copy.copy_id, 1)

        assert len(calls) == engine.max_conflict_retries + 1
        assert events == []
        assert engine.get_copy(copy.copy_id).version == 1
        assert engine.borrowings_for_member(1) == []


class TestEventsAndFailures:

    def test_events_are_published_after_commit(self, engine, members, copy):
        seen = []

        def check_committed(event):
            if isinstance(event, BorrowingCreated):
                seen.append(engine.get_copy(event.copy_id).status)

        engine.publisher.subscribe(check_committed)
        engine.borrow(copy.copy_id, 1)

        assert seen == [CopyStatus.BORROWED]

    def test_failing_subscriber_does_not_fail_the_command(self, engine, members, copy, events):
        def broken(event):
            raise RuntimeError("notification service down")

        engine.publisher.subscribe(broken, CopyStatusChanged)
        borrowing = engine.borrow(copy.copy_id, 1)

        assert borrowing.member_id == 1
        assert [type(e) for e in events[-2:]] == [CopyStatusChanged, BorrowingCreated]

    def test_failed_command_publishes_nothing(self, engine, members, copy, events):
        engine.borrow(copy.copy_id, 1)
        events.clear()

        with pytest.raises(BusinessRuleViolation):
            engine.borrow(copy.copy_id, 2)
        assert events == []

    def test_storage_failure_rolls_back_copy_write(self, engine, members, copy, monkeypatch, events):
        real_try_transition = engine.copies.try_transition

        def write_then_fail(*args, **kwargs):
            real_try_transition(*args, **kwargs)
            raise OperationalError("INSERT INTO borrowings", {}, Exception("disk I/O error"))

        monkeypatch.setattr(engine.copies, "try_transition", write_then_fail)
        events.clear()

        with pytest.raises(Unavailable):
            engine.borrow(copy.copy_id, 1)

        stored = engine.get_copy(copy.copy_id)
        assert stored.status == CopyStatus.AVAILABLE
        assert stored.version == 1
        assert events == []

    def test_loans_and_holds_are_not_administrative_edges(self, engine, copy):
        with pytest.raises(InvalidInput):
            engine.change_copy_status(copy.copy_id, CopyStatus.BORROWED)

    def test_withdrawn_copy_is_not_offered_to_reservations(self, engine, members, copy):
        engine.withdraw_copy(copy.copy_id)
        reservation = engine.reserve(BOOK_ID, 2)
        assert reservation.queue_position == 1

    def test_copy_can_be_moved(self, engine, copy):
        moved = engine.update_copy_location(copy.copy_id, "Annex/3/C-07")
        assert moved.location == "Annex/3/C-07"
        assert moved.version == copy.version + 1
        assert engine.get_copy(copy.copy_id).location == "Annex/3/C-07"
