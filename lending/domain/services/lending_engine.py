"""
Lending Engine
==============

Entry point for lending commands. Each command runs in one unit of work
(one transaction); optimistic-concurrency conflicts are retried with a
fresh read, every other error reaches the caller unchanged, and domain
events are published only after the transaction has committed.
"""

from typing import Callable, List, Optional, Sequence, TypeVar
from datetime import datetime
import logging

from ..database import LendingStore, MemberDB, UnitOfWork
from ..entities import BookCopy, Borrowing, Fine, Member, Reservation
from ..events import EventPublisher
from ..exceptions import BusinessRule, BusinessRuleViolation, Conflict, InvalidInput
from ..value_objects import CopyCondition, CopyStatus, MemberStatus, to_naive_local
from .borrowing_ledger import BorrowingLedger, EligibilityPredicate
from .copy_registry import CopyRegistry
from .fine_calculator import FineCalculator
from .policy_provider import PolicyProvider
from .reservation_queue import ReservationQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LendingEngine:
    """Orchestrates copies, loans, reservations and fines"""

    def __init__(self, store: LendingStore,
                 policy: Optional[PolicyProvider] = None,
                 publisher: Optional[EventPublisher] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 max_conflict_retries: int = 3,
                 eligibility_predicates: Sequence[EligibilityPredicate] = ()):
        self.store = store
        self.policy = policy or PolicyProvider()
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.max_conflict_retries = max_conflict_retries

        self.copies = CopyRegistry(clock)
        self.reservations = ReservationQueue(self.copies, self.policy, clock)
        self.ledger = BorrowingLedger(
            self.copies, self.reservations, FineCalculator(), self.policy, clock, eligibility_predicates
        )

    @classmethod
    def from_config(cls, settings, publisher: Optional[EventPublisher] = None) -> "LendingEngine":
        """Build an engine from application Settings"""
        store = LendingStore(settings.database.url, echo=settings.database.echo)
        policy = PolicyProvider.from_config(settings.policy)
        with store.unit_of_work() as uow:
            policy.load_overrides(uow.session)
        return cls(store, policy=policy, publisher=publisher,
                   max_conflict_retries=settings.engine.max_conflict_retries)

    # ---------------- inbound commands ----------------
    def borrow(self, copy_id: int, member_id: int, due_date: Optional[datetime] = None) -> Borrowing:
        return self._execute(
            "borrow", lambda uow: self.ledger.create_borrowing(uow, copy_id, member_id, due_date)
        )

    def return_copy(self, borrowing_id: int, condition: Optional[CopyCondition] = None) -> Borrowing:
        return self._execute(
            "return", lambda uow: self.ledger.return_book(uow, borrowing_id, condition)
        )

    def renew(self, borrowing_id: int, new_due_date: Optional[datetime] = None) -> Borrowing:
        return self._execute(
            "renew", lambda uow: self.ledger.renew_borrowing(uow, borrowing_id, new_due_date)
        )

    def reserve(self, book_id: int, member_id: int) -> Reservation:
        """Queue for a title; if a copy is already free it is held for the new reservation at once"""
        def work(uow: UnitOfWork) -> Reservation:
            self._require_active_member(uow, member_id)
            reservation = self.reservations.reserve(uow, book_id, member_id)

            free_copy = self.copies.find_available(uow, book_id)
            if free_copy is None:
                return reservation
            promoted = self.reservations.promote_next(uow, book_id, free_copy.copy_id)
            if promoted is not None:
                self.copies.try_transition(
                    uow, free_copy.copy_id, CopyStatus.AVAILABLE, CopyStatus.RESERVED, free_copy.version
                )
            return self.reservations.get(uow, reservation.reservation_id)

        return self._execute("reserve", work)

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        return self._execute("cancel_reservation", lambda uow: self.reservations.cancel(uow, reservation_id))

    def pick_up(self, reservation_id: int, due_date: Optional[datetime] = None) -> Borrowing:
        """Member collects the copy held for their reservation"""
        def work(uow: UnitOfWork) -> Borrowing:
            reservation = self.reservations.get(uow, reservation_id)
            if reservation.copy_id is None or not reservation.status.is_held:
                raise BusinessRuleViolation(
                    BusinessRule.INVALID_STATUS,
                    f"reservation {reservation_id} is {reservation.status.value}",
                    {"reservation_id": reservation_id, "status": reservation.status.value},
                )
            if reservation.pickup_expiry_date is not None and self.clock() > reservation.pickup_expiry_date:
                raise BusinessRuleViolation(
                    BusinessRule.INVALID_STATUS,
                    f"pickup window of reservation {reservation_id} has ended",
                    {"reservation_id": reservation_id,
                     "pickup_expiry_date": reservation.pickup_expiry_date.isoformat()},
                )
            self.reservations.fulfil(uow, reservation_id)
            return self.ledger.create_borrowing(
                uow, reservation.copy_id, reservation.member_id, due_date, from_status=CopyStatus.RESERVED
            )

        return self._execute("pick_up", work)

    # ---------------- administrative commands ----------------
    def report_lost(self, borrowing_id: int) -> Borrowing:
        return self._execute("report_lost", lambda uow: self.ledger.report_lost(uow, borrowing_id))

    def delete_borrowing(self, borrowing_id: int) -> None:
        self._execute("delete_borrowing", lambda uow: self.ledger.delete_borrowing(uow, borrowing_id))

    def pay_fine(self, fine_id: int) -> Fine:
        return self._execute("pay_fine", lambda uow: self.ledger.pay_fine(uow, fine_id))

    def waive_fine(self, fine_id: int) -> Fine:
        return self._execute("waive_fine", lambda uow: self.ledger.waive_fine(uow, fine_id))

    def register_copy(self, book_id: int, copy_number: int,
                      condition: CopyCondition = CopyCondition.GOOD,
                      location: Optional[str] = None) -> BookCopy:
        """Catalog intake; a new copy goes straight to the head of the book's queue if anyone waits"""
        def work(uow: UnitOfWork) -> BookCopy:
            copy = self.copies.add_copy(uow, book_id, copy_number, condition, location)
            self.reservations.open_queue(uow, book_id)
            return self._offer_to_queue(uow, copy)

        return self._execute("register_copy", work)

    def change_copy_status(self, copy_id: int, new_status: CopyStatus,
                           condition: Optional[CopyCondition] = None) -> BookCopy:
        """Administrative edges: maintenance in and out, damaged copies written off.

        condition records the state of a repaired copy, e.g. GOOD when it
        comes back from maintenance after a damaged return.
        """
        new_status = CopyStatus(new_status)
        if new_status in (CopyStatus.BORROWED, CopyStatus.RESERVED):
            raise InvalidInput("new_status", "loans and holds go through borrow/reserve", new_status.value)

        def work(uow: UnitOfWork) -> BookCopy:
            copy = self.copies.transition(uow, copy_id, new_status)
            if condition is not None:
                copy = self.copies.update_condition(uow, copy_id, condition)
            return self._offer_to_queue(uow, copy)

        return self._execute("change_copy_status", work)

    def update_copy_condition(self, copy_id: int, condition: CopyCondition) -> BookCopy:
        """Record an inspection; a shelved copy that becomes lendable serves the queue"""
        def work(uow: UnitOfWork) -> BookCopy:
            copy = self.copies.update_condition(uow, copy_id, condition)
            return self._offer_to_queue(uow, copy)

        return self._execute("update_copy_condition", work)

    def update_copy_location(self, copy_id: int, location: Optional[str]) -> BookCopy:
        return self._execute(
            "update_copy_location", lambda uow: self.copies.update_location(uow, copy_id, location)
        )

    def withdraw_copy(self, copy_id: int) -> None:
        def work(uow: UnitOfWork) -> None:
            copy = self.copies.get(uow, copy_id)
            self.copies.delete_copy(uow, copy_id, copy.version)

        self._execute("withdraw_copy", work)

    def upsert_member(self, member_id: int, status: MemberStatus = MemberStatus.ACTIVE,
                      name: Optional[str] = None) -> Member:
        """Sync hook for the member service; lending only needs id and card status"""
        def work(uow: UnitOfWork) -> Member:
            row = uow.session.get(MemberDB, member_id)
            if row is None:
                row = MemberDB(member_id=member_id)
                uow.session.add(row)
            row.status = MemberStatus(status).value
            if name is not None:
                row.name = name
            uow.session.flush()
            return Member.model_validate(row)

        return self._execute("upsert_member", work)

    # ---------------- sweeps ----------------
    def run_overdue_sweep(self, as_of: Optional[datetime] = None) -> int:
        as_of = to_naive_local(as_of) or self.clock()
        return self._execute("overdue_sweep", lambda uow: self.ledger.mark_overdue(uow, as_of))

    def run_pickup_sweep(self, as_of: Optional[datetime] = None) -> List[Reservation]:
        as_of = to_naive_local(as_of) or self.clock()
        return self._execute("pickup_sweep", lambda uow: self.reservations.expire_stale_pickups(uow, as_of))

    # ---------------- queries ----------------
    def get_copy(self, copy_id: int) -> BookCopy:
        return self._read(lambda uow: self.copies.get(uow, copy_id))

    def copies_for_book(self, book_id: int) -> List[BookCopy]:
        return self._read(lambda uow: self.copies.list_for_book(uow, book_id))

    def get_borrowing(self, borrowing_id: int) -> Borrowing:
        return self._read(lambda uow: self.ledger.get(uow, borrowing_id))

    def get_reservation(self, reservation_id: int) -> Reservation:
        return self._read(lambda uow: self.reservations.get(uow, reservation_id))

    def queue_for_book(self, book_id: int) -> List[Reservation]:
        return self._read(lambda uow: self.reservations.pending_for_book(uow, book_id))

    def fines_for_borrowing(self, borrowing_id: int) -> List[Fine]:
        return self._read(lambda uow: self.ledger.fines_for_borrowing(uow, borrowing_id))

    def borrowings_for_member(self, member_id: int, open_only: bool = False) -> List[Borrowing]:
        return self._read(lambda uow: self.ledger.list_for_member(uow, member_id, open_only))

    # ---------------- helpers ----------------
    def _require_active_member(self, uow: UnitOfWork, member_id: int) -> Member:
        member = self.ledger.get_member(uow, member_id)
        if not member.status.can_borrow:
            raise BusinessRuleViolation(
                BusinessRule.USER_NOT_ELIGIBLE,
                f"member {member_id} account is {member.status.value}",
                {"member_id": member_id, "status": member.status.value},
            )
        return member

    def _offer_to_queue(self, uow: UnitOfWork, copy: BookCopy) -> BookCopy:
        """Hold a lendable shelved copy for the oldest pending reservation, if any"""
        if copy.is_available and self.reservations.promote_next(uow, copy.book_id, copy.copy_id):
            copy = self.copies.try_transition(
                uow, copy.copy_id, CopyStatus.AVAILABLE, CopyStatus.RESERVED, copy.version
            )
        return copy

    def _execute(self, operation: str, work: Callable[[UnitOfWork], T]) -> T:
        """Run work in a fresh unit of work, retrying on Conflict"""
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.store.unit_of_work() as uow:
                    result = work(uow)
            except Conflict as e:
                if attempt > self.max_conflict_retries:
                    logger.warning(f"{operation}: giving up after {attempt} attempts: {e.message}")
                    raise
                logger.info(f"{operation}: conflict on attempt {attempt}, retrying with fresh state")
                continue

            self.publisher.publish_all(uow.events)
            return result

    def _read(self, work: Callable[[UnitOfWork], T]) -> T:
        with self.store.unit_of_work() as uow:
            return work(uow)
