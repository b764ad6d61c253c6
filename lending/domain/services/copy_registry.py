"""
Copy Registry
=============

Sole writer of BookCopy.status. Every status change goes through
``try_transition``: a compare-and-set on (status, version) executed as a
single UPDATE, so two callers acting on the same stale read can never
both succeed.
"""

from typing import Callable, Dict, FrozenSet, List, Optional
from datetime import datetime
import logging

from sqlalchemy import update

from ..database import BookCopyDB, UnitOfWork
from ..entities import BookCopy
from ..events import CopyStatusChanged
from ..exceptions import (
    BusinessRule, BusinessRuleViolation, Conflict, InvalidInput, InvalidTransition, NotFound
)
from ..value_objects import CopyCondition, CopyStatus

logger = logging.getLogger(__name__)

# Any pair not listed here is illegal, including LOST -> AVAILABLE and BORROWED -> LOST
TRANSITIONS: Dict[CopyStatus, FrozenSet[CopyStatus]] = {
    CopyStatus.AVAILABLE: frozenset({CopyStatus.BORROWED, CopyStatus.RESERVED, CopyStatus.MAINTENANCE}),
    CopyStatus.BORROWED: frozenset({CopyStatus.AVAILABLE, CopyStatus.RESERVED, CopyStatus.DAMAGED}),
    CopyStatus.RESERVED: frozenset({CopyStatus.BORROWED, CopyStatus.AVAILABLE}),
    CopyStatus.MAINTENANCE: frozenset({CopyStatus.AVAILABLE}),
    CopyStatus.DAMAGED: frozenset({CopyStatus.MAINTENANCE, CopyStatus.LOST}),
    CopyStatus.LOST: frozenset(),
}


def can_transition(from_status: CopyStatus, to_status: CopyStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


class CopyRegistry:
    """Owns BookCopy records and their state machine"""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def get(self, uow: UnitOfWork, copy_id: int) -> BookCopy:
        """Fresh read of a copy; withdrawn copies are treated as missing"""
        row = self._load(uow, copy_id)
        return BookCopy.model_validate(row)

    def list_for_book(self, uow: UnitOfWork, book_id: int) -> List[BookCopy]:
        rows = (
            uow.session.query(BookCopyDB)
            .filter(BookCopyDB.book_id == book_id, BookCopyDB.deleted.is_(False))
            .order_by(BookCopyDB.copy_number)
            .all()
        )
        return [BookCopy.model_validate(row) for row in rows]

    def find_available(self, uow: UnitOfWork, book_id: int) -> Optional[BookCopy]:
        """Lowest-numbered lendable copy of a title, if any"""
        rows = (
            uow.session.query(BookCopyDB)
            .filter(
                BookCopyDB.book_id == book_id,
                BookCopyDB.status == CopyStatus.AVAILABLE.value,
                BookCopyDB.condition != CopyCondition.DAMAGED.value,
                BookCopyDB.deleted.is_(False),
            )
            .order_by(BookCopyDB.copy_number)
            .limit(1)
            .all()
        )
        return BookCopy.model_validate(rows[0]) if rows else None

    def add_copy(self, uow: UnitOfWork, book_id: int, copy_number: int,
                 condition: CopyCondition = CopyCondition.GOOD,
                 location: Optional[str] = None) -> BookCopy:
        """Catalog intake of a new physical copy"""
        if copy_number is None or copy_number <= 0:
            raise InvalidInput("copy_number", "must be a positive integer", copy_number)

        duplicate = (
            uow.session.query(BookCopyDB)
            .filter_by(book_id=book_id, copy_number=copy_number)
            .first()
        )
        if duplicate:
            raise BusinessRuleViolation(
                BusinessRule.DUPLICATE_COPY_NUMBER,
                f"book {book_id} already has copy number {copy_number}",
                {"book_id": book_id, "copy_number": copy_number, "copy_id": duplicate.copy_id},
            )

        row = BookCopyDB(
            book_id=book_id,
            copy_number=copy_number,
            status=CopyStatus.AVAILABLE.value,
            condition=CopyCondition(condition).value,
            location=location,
            version=1,
            deleted=False,
        )
        uow.session.add(row)
        uow.session.flush()
        logger.info(f"Registered copy {row.copy_id} (book {book_id}, #{copy_number})")
        return BookCopy.model_validate(row)

    def try_transition(self, uow: UnitOfWork, copy_id: int, expected_status: CopyStatus,
                       new_status: CopyStatus, expected_version: int) -> BookCopy:
        """Compare-and-set (status, version) -> (new_status, version + 1).

        Raises:
            InvalidTransition: the edge is not in the state machine
            NotFound: no such copy
            Conflict: stored status or version differs from the expectation
        """
        expected_status = CopyStatus(expected_status)
        new_status = CopyStatus(new_status)
        if not can_transition(expected_status, new_status):
            raise InvalidTransition("BookCopy", copy_id, expected_status.value, new_status.value)

        result = uow.session.execute(
            update(BookCopyDB)
            .where(
                BookCopyDB.copy_id == copy_id,
                BookCopyDB.status == expected_status.value,
                BookCopyDB.version == expected_version,
                BookCopyDB.deleted.is_(False),
            )
            .values(status=new_status.value, version=BookCopyDB.version + 1, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            current = self._load(uow, copy_id)
            logger.warning(
                f"Copy {copy_id} transition {expected_status.value}->{new_status.value} lost the race: "
                f"expected v{expected_version}, found {current.status} v{current.version}"
            )
            raise Conflict(
                "BookCopy", copy_id,
                expected={"status": expected_status.value, "version": expected_version},
                actual={"status": current.status, "version": current.version},
            )

        row = self._load(uow, copy_id)
        uow.record(CopyStatusChanged(
            copy_id=copy_id, from_status=expected_status, to_status=new_status, version=row.version
        ))
        logger.info(f"Copy {copy_id}: {expected_status.value} -> {new_status.value} (v{row.version})")
        return BookCopy.model_validate(row)

    def transition(self, uow: UnitOfWork, copy_id: int, new_status: CopyStatus,
                   expected_status: Optional[CopyStatus] = None) -> BookCopy:
        """Read the copy and move it to new_status through try_transition"""
        copy = self.get(uow, copy_id)
        if expected_status is not None and copy.status != expected_status:
            raise Conflict(
                "BookCopy", copy_id,
                expected={"status": CopyStatus(expected_status).value},
                actual={"status": copy.status.value, "version": copy.version},
            )
        return self.try_transition(uow, copy_id, copy.status, new_status, copy.version)

    def update_condition(self, uow: UnitOfWork, copy_id: int, condition: CopyCondition) -> BookCopy:
        row = self._load(uow, copy_id)
        row.condition = CopyCondition(condition).value
        row.version += 1
        uow.session.flush()
        return BookCopy.model_validate(row)

    def update_location(self, uow: UnitOfWork, copy_id: int, location: Optional[str]) -> BookCopy:
        row = self._load(uow, copy_id)
        row.location = location
        row.version += 1
        uow.session.flush()
        return BookCopy.model_validate(row)

    def delete_copy(self, uow: UnitOfWork, copy_id: int, expected_version: int) -> None:
        """Withdraw a copy from the catalog; never while it is out or held"""
        copy = self.get(uow, copy_id)
        if copy.status.is_in_circulation:
            raise BusinessRuleViolation(
                BusinessRule.COPY_IN_CIRCULATION,
                f"copy {copy_id} is {copy.status.value}",
                {"copy_id": copy_id, "status": copy.status.value},
            )

        result = uow.session.execute(
            update(BookCopyDB)
            .where(
                BookCopyDB.copy_id == copy_id,
                BookCopyDB.status == copy.status.value,
                BookCopyDB.version == expected_version,
                BookCopyDB.deleted.is_(False),
            )
            .values(deleted=True, version=BookCopyDB.version + 1, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict(
                "BookCopy", copy_id,
                expected={"version": expected_version},
                actual={"status": copy.status.value, "version": copy.version},
            )
        logger.info(f"Copy {copy_id} withdrawn")

    def _load(self, uow: UnitOfWork, copy_id: int) -> BookCopyDB:
        row = uow.session.get(BookCopyDB, copy_id, populate_existing=True)
        if row is None or row.deleted:
            raise NotFound("BookCopy", copy_id)
        return row
