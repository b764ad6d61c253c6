"""
Reservation Queue
=================

Per-title FIFO of pending demand. When a copy frees up the oldest
pending reservation is promoted to READY_FOR_PICKUP and the copy is held
for it. Pending reservations always carry a dense 1..N queue position.

All writes to one title's queue first lock that title's
``reservation_queues`` row, so enqueue, promotion, cancellation and
expiry for the same book are serialised.
"""

from typing import Callable, List, Optional
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError

from ..database import ReservationDB, ReservationQueueDB, UnitOfWork
from ..entities import Reservation
from ..events import ReservationCancelled, ReservationExpired, ReservationReadyForPickup
from ..exceptions import BusinessRule, BusinessRuleViolation, Conflict, NotFound
from ..value_objects import CopyStatus, HELD_RESERVATION_STATUSES, ReservationStatus
from .copy_registry import CopyRegistry
from .policy_provider import PolicyProvider

logger = logging.getLogger(__name__)


class ReservationQueue:
    """FIFO admission and promotion of reservations per book"""

    def __init__(self, copies: CopyRegistry, policy: PolicyProvider,
                 clock: Callable[[], datetime] = datetime.now):
        self.copies = copies
        self.policy = policy
        self.clock = clock

    # ---------------- queries ----------------
    def get(self, uow: UnitOfWork, reservation_id: int) -> Reservation:
        return Reservation.model_validate(self._load(uow, reservation_id))

    def pending_for_book(self, uow: UnitOfWork, book_id: int) -> List[Reservation]:
        """Pending reservations in promotion order"""
        return [Reservation.model_validate(row) for row in self._pending_rows(uow, book_id)]

    def ready_for_copy(self, uow: UnitOfWork, copy_id: int) -> Optional[Reservation]:
        """The reservation a RESERVED copy is being held for"""
        row = (
            uow.session.query(ReservationDB)
            .filter_by(copy_id=copy_id, status=ReservationStatus.READY_FOR_PICKUP.value)
            .first()
        )
        return Reservation.model_validate(row) if row else None

    # ---------------- commands ----------------
    def reserve(self, uow: UnitOfWork, book_id: int, member_id: int) -> Reservation:
        """Append a PENDING reservation at the end of the book's queue"""
        self._lock_book(uow, book_id)

        existing = (
            uow.session.query(ReservationDB)
            .filter(
                ReservationDB.book_id == book_id,
                ReservationDB.member_id == member_id,
                ReservationDB.status.in_(HELD_RESERVATION_STATUSES),
            )
            .first()
        )
        if existing:
            raise BusinessRuleViolation(
                BusinessRule.ALREADY_RESERVED,
                f"member {member_id} already holds reservation {existing.reservation_id} for book {book_id}",
                {"book_id": book_id, "member_id": member_id, "reservation_id": existing.reservation_id},
            )

        position = len(self._pending_rows(uow, book_id)) + 1
        row = ReservationDB(
            book_id=book_id,
            member_id=member_id,
            reservation_date=self.clock(),
            status=ReservationStatus.PENDING.value,
            queue_position=position,
        )
        uow.session.add(row)
        uow.session.flush()

        logger.info(f"Reservation {row.reservation_id}: member {member_id} queued for book {book_id} at #{position}")
        return Reservation.model_validate(row)

    def promote_next(self, uow: UnitOfWork, book_id: int, copy_id: int,
                     now: Optional[datetime] = None) -> Optional[Reservation]:
        """Hand copy_id to the oldest pending reservation of the book.

        Only the reservation side is written here; the caller moves the
        copy to RESERVED when a reservation is returned, and leaves it
        AVAILABLE when the queue is empty (None).
        """
        self._lock_book(uow, book_id)

        pending = self._pending_rows(uow, book_id)
        if not pending:
            return None

        head = pending[0]
        now = now or self.clock()
        head.status = ReservationStatus.READY_FOR_PICKUP.value
        head.pickup_expiry_date = now + self.policy.current().pickup_window
        head.copy_id = copy_id
        head.queue_position = None
        self._renumber(pending[1:])
        uow.session.flush()

        uow.record(ReservationReadyForPickup(
            reservation_id=head.reservation_id,
            book_id=book_id,
            member_id=head.member_id,
            copy_id=copy_id,
            pickup_expiry_date=head.pickup_expiry_date,
        ))
        logger.info(f"Reservation {head.reservation_id} ready for pickup of copy {copy_id} "
                    f"until {head.pickup_expiry_date:%Y-%m-%d %H:%M}")
        return Reservation.model_validate(head)

    def fulfil(self, uow: UnitOfWork, reservation_id: int) -> Reservation:
        """Mark a ready reservation as picked up"""
        row = self._load(uow, reservation_id)
        self._lock_book(uow, row.book_id)
        uow.session.refresh(row)
        if row.status != ReservationStatus.READY_FOR_PICKUP.value:
            raise BusinessRuleViolation(
                BusinessRule.INVALID_STATUS,
                f"reservation {reservation_id} is {row.status}, not ready for pickup",
                {"reservation_id": reservation_id, "status": row.status},
            )
        row.status = ReservationStatus.FULFILLED.value
        uow.session.flush()
        return Reservation.model_validate(row)

    def cancel(self, uow: UnitOfWork, reservation_id: int) -> Reservation:
        """Cancel a pending or ready reservation; a held copy is passed on or released"""
        row = self._load(uow, reservation_id)
        self._lock_book(uow, row.book_id)
        uow.session.refresh(row)

        if row.status == ReservationStatus.PENDING.value:
            row.status = ReservationStatus.CANCELLED.value
            row.queue_position = None
            uow.session.flush()
            self._renumber(self._pending_rows(uow, row.book_id))
        elif row.status == ReservationStatus.READY_FOR_PICKUP.value:
            row.status = ReservationStatus.CANCELLED.value
            uow.session.flush()
            self._release_copy(uow, row.book_id, row.copy_id, self.clock())
        else:
            raise BusinessRuleViolation(
                BusinessRule.RESERVATION_NOT_CANCELLABLE,
                f"reservation {reservation_id} is {row.status}",
                {"reservation_id": reservation_id, "status": row.status},
            )
        uow.session.flush()

        uow.record(ReservationCancelled(
            reservation_id=row.reservation_id, book_id=row.book_id, member_id=row.member_id
        ))
        logger.info(f"Reservation {reservation_id} cancelled")
        return Reservation.model_validate(row)

    def expire_stale_pickups(self, uow: UnitOfWork, as_of: datetime) -> List[Reservation]:
        """Expire READY_FOR_PICKUP reservations whose window ended before as_of.

        Each held copy goes to the next pending reservation or back to
        AVAILABLE. Copies passed on here get a window measured from
        max(now, as_of), so a repeated call with the same as_of is a no-op.
        """
        stale_ids = [
            reservation_id for (reservation_id,) in
            uow.session.query(ReservationDB.reservation_id)
            .filter(
                ReservationDB.status == ReservationStatus.READY_FOR_PICKUP.value,
                ReservationDB.pickup_expiry_date < as_of,
            )
            .order_by(ReservationDB.pickup_expiry_date, ReservationDB.reservation_id)
            .all()
        ]

        promotion_time = max(self.clock(), as_of)
        expired: List[Reservation] = []
        for reservation_id in stale_ids:
            row = self._load(uow, reservation_id)
            self._lock_book(uow, row.book_id)
            uow.session.refresh(row)
            # Another caller may have cancelled or fulfilled it meanwhile
            if row.status != ReservationStatus.READY_FOR_PICKUP.value or row.pickup_expiry_date >= as_of:
                continue

            row.status = ReservationStatus.EXPIRED.value
            uow.session.flush()
            uow.record(ReservationExpired(
                reservation_id=row.reservation_id, book_id=row.book_id, member_id=row.member_id
            ))
            logger.info(f"Reservation {reservation_id} expired (window ended {row.pickup_expiry_date})")

            self._release_copy(uow, row.book_id, row.copy_id, promotion_time)
            expired.append(Reservation.model_validate(row))

        return expired

    # ---------------- helpers ----------------
    def _release_copy(self, uow: UnitOfWork, book_id: int, copy_id: Optional[int], now: datetime) -> None:
        """Pass a held copy to the next pending reservation, else make it AVAILABLE"""
        if copy_id is None:
            return
        copy = self.copies.get(uow, copy_id)
        if copy.status != CopyStatus.RESERVED:
            logger.warning(f"Copy {copy_id} held by a reservation is {copy.status.value}; leaving it as is")
            return

        if self.promote_next(uow, book_id, copy_id, now=now) is None:
            self.copies.try_transition(uow, copy_id, CopyStatus.RESERVED, CopyStatus.AVAILABLE, copy.version)

    def open_queue(self, uow: UnitOfWork, book_id: int) -> None:
        """Make sure the book's queue row exists so later writers have a row to lock"""
        if uow.session.get(ReservationQueueDB, book_id) is None:
            self._create_queue_row(uow, book_id)

    def _lock_book(self, uow: UnitOfWork, book_id: int) -> None:
        """Take the per-book queue lock for the rest of the transaction"""
        queue = (
            uow.session.query(ReservationQueueDB)
            .filter_by(book_id=book_id)
            .with_for_update()
            .first()
        )
        if queue is None:
            # Nothing to lock yet; the primary key insert serialises first writers
            self._create_queue_row(uow, book_id)
            return
        queue.version = (queue.version or 0) + 1
        uow.session.flush()

    def _create_queue_row(self, uow: UnitOfWork, book_id: int) -> None:
        uow.session.add(ReservationQueueDB(book_id=book_id, version=1))
        try:
            uow.session.flush()
        except IntegrityError as e:
            logger.info(f"Queue row for book {book_id} created concurrently; retrying")
            raise Conflict(
                "ReservationQueue", book_id, expected={"exists": False}, actual={"exists": True}
            ) from e

    def _pending_rows(self, uow: UnitOfWork, book_id: int) -> List[ReservationDB]:
        return (
            uow.session.query(ReservationDB)
            .filter_by(book_id=book_id, status=ReservationStatus.PENDING.value)
            .order_by(ReservationDB.reservation_date, ReservationDB.reservation_id)
            .all()
        )

    @staticmethod
    def _renumber(pending: List[ReservationDB]) -> None:
        for position, row in enumerate(pending, start=1):
            row.queue_position = position

    def _load(self, uow: UnitOfWork, reservation_id: int) -> ReservationDB:
        row = uow.session.get(ReservationDB, reservation_id, populate_existing=True)
        if row is None:
            raise NotFound("Reservation", reservation_id)
        return row
