"""
Borrowing Ledger
================

Lifecycle of loans: create, renew, return, delete, plus the overdue
sweep and fine bookkeeping.

Copy writes always come first and go through the Copy Registry's
compare-and-set; ledger rows are written second in the same
transaction, so a failed ledger write rolls the copy back with it.
Fines are only issued at return (or when a loan is reported lost);
``mark_overdue`` never creates one.
"""

from typing import Callable, List, Optional, Sequence
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import func, update

from ..database import BorrowingDB, FineDB, MemberDB, UnitOfWork
from ..entities import Borrowing, Fine, Member
from ..events import BorrowingCreated, BorrowingLost, BorrowingRenewed, BorrowingReturned, FineIssued
from ..exceptions import BusinessRule, BusinessRuleViolation, NotFound
from ..value_objects import (
    BorrowingStatus, CopyCondition, CopyStatus, FineStatus, OPEN_BORROWING_STATUSES, to_money, to_naive_local
)
from .copy_registry import CopyRegistry
from .fine_calculator import FineCalculator
from .policy_provider import PolicyProvider
from .reservation_queue import ReservationQueue

logger = logging.getLogger(__name__)

EligibilityPredicate = Callable[[Member], bool]


class BorrowingLedger:
    """Owns Borrowing and Fine records"""

    def __init__(self, copies: CopyRegistry, reservations: ReservationQueue,
                 fines: FineCalculator, policy: PolicyProvider,
                 clock: Callable[[], datetime] = datetime.now,
                 eligibility_predicates: Sequence[EligibilityPredicate] = ()):
        self.copies = copies
        self.reservations = reservations
        self.fines = fines
        self.policy = policy
        self.clock = clock
        self.eligibility_predicates = list(eligibility_predicates)

    # ---------------- queries ----------------
    def get(self, uow: UnitOfWork, borrowing_id: int) -> Borrowing:
        return Borrowing.model_validate(self._load(uow, borrowing_id))

    def list_for_member(self, uow: UnitOfWork, member_id: int, open_only: bool = False) -> List[Borrowing]:
        query = uow.session.query(BorrowingDB).filter(BorrowingDB.member_id == member_id)
        if open_only:
            query = query.filter(BorrowingDB.status.in_(OPEN_BORROWING_STATUSES))
        return [Borrowing.model_validate(row) for row in query.order_by(BorrowingDB.borrowing_id).all()]

    def count_open(self, uow: UnitOfWork, member_id: int) -> int:
        """ACTIVE + OVERDUE loans held by a member"""
        return (
            uow.session.query(func.count(BorrowingDB.borrowing_id))
            .filter(BorrowingDB.member_id == member_id, BorrowingDB.status.in_(OPEN_BORROWING_STATUSES))
            .scalar()
        )

    def outstanding_fines(self, uow: UnitOfWork, member_id: int) -> Decimal:
        """Sum of a member's unpaid fines"""
        total = (
            uow.session.query(func.sum(FineDB.amount))
            .filter(FineDB.member_id == member_id, FineDB.status == FineStatus.PENDING.value)
            .scalar()
        )
        return to_money(total or 0)

    def fines_for_borrowing(self, uow: UnitOfWork, borrowing_id: int) -> List[Fine]:
        rows = uow.session.query(FineDB).filter_by(borrowing_id=borrowing_id).order_by(FineDB.fine_id).all()
        return [Fine.model_validate(row) for row in rows]

    def get_member(self, uow: UnitOfWork, member_id: int) -> Member:
        row = uow.session.get(MemberDB, member_id, populate_existing=True)
        if row is None:
            raise NotFound("Member", member_id)
        return Member.model_validate(row)

    # ---------------- eligibility ----------------
    def check_eligibility(self, uow: UnitOfWork, member_id: int) -> Member:
        """Raise unless the member may take out one more loan"""
        member = self.get_member(uow, member_id)
        policy = self.policy.current()

        if not member.status.can_borrow:
            raise BusinessRuleViolation(
                BusinessRule.USER_NOT_ELIGIBLE,
                f"member {member_id} account is {member.status.value}",
                {"member_id": member_id, "status": member.status.value},
            )
        for predicate in self.eligibility_predicates:
            if not predicate(member):
                name = getattr(predicate, "__name__", repr(predicate))
                raise BusinessRuleViolation(
                    BusinessRule.USER_NOT_ELIGIBLE,
                    f"member {member_id} failed eligibility check {name}",
                    {"member_id": member_id, "predicate": name},
                )

        open_loans = self.count_open(uow, member_id)
        if open_loans >= policy.max_active_borrowings:
            raise BusinessRuleViolation(
                BusinessRule.BORROWING_LIMIT_EXCEEDED,
                f"member {member_id} already has {open_loans} open loans",
                {"member_id": member_id, "open_loans": open_loans, "limit": policy.max_active_borrowings},
            )

        owed = self.outstanding_fines(uow, member_id)
        if owed > policy.max_outstanding_fines:
            raise BusinessRuleViolation(
                BusinessRule.OUTSTANDING_FINES,
                f"member {member_id} owes {owed}",
                {"member_id": member_id, "outstanding": str(owed),
                 "threshold": str(policy.max_outstanding_fines)},
            )
        return member

    # ---------------- commands ----------------
    def create_borrowing(self, uow: UnitOfWork, copy_id: int, member_id: int,
                         requested_due_date: Optional[datetime] = None,
                         from_status: CopyStatus = CopyStatus.AVAILABLE) -> Borrowing:
        """Allocate a copy to a member.

        from_status is AVAILABLE for a walk-up loan and RESERVED when a
        member collects a copy held for their reservation.
        """
        self.check_eligibility(uow, member_id)

        now = self.clock()
        due_date = to_naive_local(requested_due_date) or now + self.policy.current().loan_period
        if due_date <= now:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_DUE_DATE,
                "due date must be after the borrow date",
                {"due_date": due_date.isoformat(), "borrow_date": now.isoformat()},
            )

        copy = self.copies.get(uow, copy_id)
        if copy.status != from_status or not copy.condition.can_be_borrowed:
            raise BusinessRuleViolation(
                BusinessRule.BOOK_NOT_AVAILABLE,
                f"copy {copy_id} is {copy.status.value} ({copy.condition.value})",
                {"copy_id": copy_id, "status": copy.status.value, "condition": copy.condition.value},
            )
        self.copies.try_transition(uow, copy_id, from_status, CopyStatus.BORROWED, copy.version)

        row = BorrowingDB(
            copy_id=copy_id,
            member_id=member_id,
            borrow_date=now,
            due_date=due_date,
            status=BorrowingStatus.ACTIVE.value,
            renewal_count=0,
        )
        uow.session.add(row)
        uow.session.flush()

        uow.record(BorrowingCreated(
            borrowing_id=row.borrowing_id, copy_id=copy_id, member_id=member_id, due_date=due_date
        ))
        logger.info(f"Borrowing {row.borrowing_id}: copy {copy_id} to member {member_id}, due {due_date:%Y-%m-%d}")
        return Borrowing.model_validate(row)

    def return_book(self, uow: UnitOfWork, borrowing_id: int,
                    condition_report: Optional[CopyCondition] = None) -> Borrowing:
        """Close a loan, charge any late fine and free or re-hold the copy"""
        row = self._load(uow, borrowing_id)
        status = BorrowingStatus(row.status)
        if status is BorrowingStatus.RETURNED:
            raise BusinessRuleViolation(
                BusinessRule.ALREADY_RETURNED,
                f"borrowing {borrowing_id} was returned on {row.return_date:%Y-%m-%d}",
                {"borrowing_id": borrowing_id},
            )
        if not status.is_open:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_STATUS,
                f"borrowing {borrowing_id} is {status.value}",
                {"borrowing_id": borrowing_id, "status": status.value},
            )

        now = self.clock()
        condition = CopyCondition(condition_report) if condition_report else None
        copy = self.copies.get(uow, row.copy_id)

        # Copy first
        if condition is CopyCondition.DAMAGED:
            self.copies.try_transition(uow, copy.copy_id, CopyStatus.BORROWED, CopyStatus.DAMAGED, copy.version)
            self.copies.update_condition(uow, copy.copy_id, condition)
        else:
            if condition is not None:
                copy = self.copies.update_condition(uow, copy.copy_id, condition)
            promoted = self.reservations.promote_next(uow, copy.book_id, copy.copy_id)
            target = CopyStatus.RESERVED if promoted else CopyStatus.AVAILABLE
            self.copies.try_transition(uow, copy.copy_id, CopyStatus.BORROWED, target, copy.version)

        # Ledger second
        row.return_date = now
        row.status = BorrowingStatus.RETURNED.value
        row.condition_on_return = condition.value if condition else None
        amount = self.fines.compute(row.due_date, now, self.policy.current())
        fine = None
        if amount > 0:
            row.fine_amount = amount
            fine = self._issue_fine(uow, row, amount, f"Returned {self.fines.days_late(row.due_date, now)} day(s) late")
        uow.session.flush()

        uow.record(BorrowingReturned(
            borrowing_id=row.borrowing_id,
            copy_id=row.copy_id,
            member_id=row.member_id,
            return_date=now,
            fine_amount=fine.amount if fine else None,
        ))
        logger.info(f"Borrowing {borrowing_id} returned" + (f" with fine {fine.amount}" if fine else ""))
        return Borrowing.model_validate(row)

    def renew_borrowing(self, uow: UnitOfWork, borrowing_id: int,
                        new_due_date: Optional[datetime] = None) -> Borrowing:
        """Extend an ACTIVE, not yet overdue loan"""
        row = self._load(uow, borrowing_id)
        status = BorrowingStatus(row.status)
        policy = self.policy.current()
        now = self.clock()

        if not status.is_open:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_STATUS,
                f"borrowing {borrowing_id} is {status.value}",
                {"borrowing_id": borrowing_id, "status": status.value},
            )
        if now > row.due_date or status is BorrowingStatus.OVERDUE:
            raise BusinessRuleViolation(
                BusinessRule.CANNOT_RENEW_OVERDUE,
                f"borrowing {borrowing_id} was due {row.due_date:%Y-%m-%d}",
                {"borrowing_id": borrowing_id, "due_date": row.due_date.isoformat()},
            )
        if row.renewal_count >= policy.max_renewals:
            raise BusinessRuleViolation(
                BusinessRule.RENEWAL_LIMIT_EXCEEDED,
                f"borrowing {borrowing_id} already renewed {row.renewal_count} time(s)",
                {"borrowing_id": borrowing_id, "renewal_count": row.renewal_count,
                 "limit": policy.max_renewals},
            )

        new_due_date = to_naive_local(new_due_date) or row.due_date + policy.loan_period
        if new_due_date <= row.due_date:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_DUE_DATE,
                "new due date must be later than the current one",
                {"borrowing_id": borrowing_id, "due_date": row.due_date.isoformat(),
                 "new_due_date": new_due_date.isoformat()},
            )

        row.due_date = new_due_date
        row.renewal_count += 1
        uow.session.flush()

        uow.record(BorrowingRenewed(
            borrowing_id=row.borrowing_id, due_date=new_due_date, renewal_count=row.renewal_count
        ))
        logger.info(f"Borrowing {borrowing_id} renewed until {new_due_date:%Y-%m-%d} "
                    f"({row.renewal_count}/{policy.max_renewals})")
        return Borrowing.model_validate(row)

    def delete_borrowing(self, uow: UnitOfWork, borrowing_id: int) -> None:
        """Administrative hard delete of a returned, fully settled loan"""
        row = self._load(uow, borrowing_id)
        if row.status != BorrowingStatus.RETURNED.value:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_STATUS,
                f"borrowing {borrowing_id} is {row.status}; only returned loans can be deleted",
                {"borrowing_id": borrowing_id, "status": row.status},
            )
        pending = (
            uow.session.query(FineDB)
            .filter_by(borrowing_id=borrowing_id, status=FineStatus.PENDING.value)
            .first()
        )
        if pending:
            raise BusinessRuleViolation(
                BusinessRule.FINE_PENDING,
                f"borrowing {borrowing_id} has unpaid fine {pending.fine_id}",
                {"borrowing_id": borrowing_id, "fine_id": pending.fine_id},
            )
        uow.session.delete(row)
        uow.session.flush()
        logger.info(f"Borrowing {borrowing_id} deleted")

    def mark_overdue(self, uow: UnitOfWork, as_of: datetime) -> int:
        """Flip ACTIVE loans due before as_of to OVERDUE; returns how many changed"""
        result = uow.session.execute(
            update(BorrowingDB)
            .where(BorrowingDB.status == BorrowingStatus.ACTIVE.value, BorrowingDB.due_date < as_of)
            .values(status=BorrowingStatus.OVERDUE.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Marked {result.rowcount} borrowing(s) overdue as of {as_of:%Y-%m-%d %H:%M}")
        return result.rowcount

    def report_lost(self, uow: UnitOfWork, borrowing_id: int) -> Borrowing:
        """Close an open loan as LOST, charging the fine cap.

        The copy is walked BORROWED -> DAMAGED -> LOST; the direct edge is forbidden.
        """
        row = self._load(uow, borrowing_id)
        if not BorrowingStatus(row.status).is_open:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_STATUS,
                f"borrowing {borrowing_id} is {row.status}",
                {"borrowing_id": borrowing_id, "status": row.status},
            )

        copy = self.copies.get(uow, row.copy_id)
        damaged = self.copies.try_transition(uow, copy.copy_id, CopyStatus.BORROWED, CopyStatus.DAMAGED, copy.version)
        self.copies.try_transition(uow, copy.copy_id, CopyStatus.DAMAGED, CopyStatus.LOST, damaged.version)

        amount = self.policy.current().max_fine
        row.status = BorrowingStatus.LOST.value
        row.fine_amount = amount
        if amount > 0:
            self._issue_fine(uow, row, amount, "Copy reported lost")
        uow.session.flush()

        uow.record(BorrowingLost(borrowing_id=row.borrowing_id, copy_id=row.copy_id, member_id=row.member_id))
        logger.info(f"Borrowing {borrowing_id} reported lost")
        return Borrowing.model_validate(row)

    def pay_fine(self, uow: UnitOfWork, fine_id: int) -> Fine:
        return self._settle_fine(uow, fine_id, FineStatus.PAID)

    def waive_fine(self, uow: UnitOfWork, fine_id: int) -> Fine:
        return self._settle_fine(uow, fine_id, FineStatus.WAIVED)

    # ---------------- helpers ----------------
    def _issue_fine(self, uow: UnitOfWork, borrowing: BorrowingDB, amount: Decimal, reason: str) -> Fine:
        """Create the fine for a borrowing; at most one non-waived fine per borrowing"""
        existing = (
            uow.session.query(FineDB)
            .filter(FineDB.borrowing_id == borrowing.borrowing_id, FineDB.status != FineStatus.WAIVED.value)
            .first()
        )
        if existing:
            logger.warning(f"Borrowing {borrowing.borrowing_id} already has fine {existing.fine_id}; not issuing another")
            return Fine.model_validate(existing)

        fine = FineDB(
            borrowing_id=borrowing.borrowing_id,
            member_id=borrowing.member_id,
            amount=to_money(amount),
            reason=reason,
            status=FineStatus.PENDING.value,
            created_at=self.clock(),
        )
        uow.session.add(fine)
        uow.session.flush()

        uow.record(FineIssued(
            fine_id=fine.fine_id, borrowing_id=borrowing.borrowing_id,
            member_id=borrowing.member_id, amount=fine.amount
        ))
        return Fine.model_validate(fine)

    def _settle_fine(self, uow: UnitOfWork, fine_id: int, outcome: FineStatus) -> Fine:
        fine = uow.session.get(FineDB, fine_id, populate_existing=True)
        if fine is None:
            raise NotFound("Fine", fine_id)
        if fine.status != FineStatus.PENDING.value:
            raise BusinessRuleViolation(
                BusinessRule.FINE_ALREADY_SETTLED,
                f"fine {fine_id} is already {fine.status}",
                {"fine_id": fine_id, "status": fine.status},
            )
        fine.status = outcome.value
        fine.settled_at = self.clock()
        uow.session.flush()
        logger.info(f"Fine {fine_id} {outcome.value.lower()}")
        return Fine.model_validate(fine)

    def _load(self, uow: UnitOfWork, borrowing_id: int) -> BorrowingDB:
        row = uow.session.get(BorrowingDB, borrowing_id, populate_existing=True)
        if row is None:
            raise NotFound("Borrowing", borrowing_id)
        return row
