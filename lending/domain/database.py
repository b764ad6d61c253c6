"""
Database Models for Lending State
=================================

SQLAlchemy models and the store that hands out units of work.
Every lending command runs inside exactly one unit of work: a single
database transaction plus the domain events it produced.
"""

from contextlib import contextmanager, nullcontext
from typing import Iterator, List
import logging
import threading

from sqlalchemy import (
    Column, String, DateTime, Text, Boolean, Integer, Numeric, Index,
    UniqueConstraint, create_engine, func
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .events import DomainEvent
from .exceptions import DomainException, Unavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


class MemberDB(Base):
    """Lending view of a member, synchronised from the member service"""

    __tablename__ = 'members'

    member_id = Column(Integer, primary_key=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="ACTIVE")
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class BookCopyDB(Base):
    """Physical copy with its circulation status"""

    __tablename__ = 'book_copies'

    copy_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, nullable=False, index=True)
    copy_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="AVAILABLE", index=True)
    condition = Column(String, nullable=False, default="GOOD")
    location = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('book_id', 'copy_number', name='uq_copy_number_per_book'),
        Index('idx_copy_book_status', 'book_id', 'status'),
    )


class BorrowingDB(Base):
    """Loan of one copy to one member"""

    __tablename__ = 'borrowings'

    borrowing_id = Column(Integer, primary_key=True, autoincrement=True)
    copy_id = Column(Integer, nullable=False, index=True)
    member_id = Column(Integer, nullable=False, index=True)
    borrow_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="ACTIVE")
    renewal_count = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Numeric(10, 2), nullable=True)
    condition_on_return = Column(String, nullable=True)

    __table_args__ = (
        Index('idx_borrowing_member_status', 'member_id', 'status'),
        Index('idx_borrowing_status_due', 'status', 'due_date'),
    )


class FineDB(Base):
    """Penalty attached to a borrowing"""

    __tablename__ = 'fines'

    fine_id = Column(Integer, primary_key=True, autoincrement=True)
    borrowing_id = Column(Integer, nullable=False, index=True)
    member_id = Column(Integer, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="PENDING")
    created_at = Column(DateTime, nullable=False)
    settled_at = Column(DateTime, nullable=True)


class ReservationDB(Base):
    """Queued demand for a title"""

    __tablename__ = 'reservations'

    reservation_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, nullable=False)
    member_id = Column(Integer, nullable=False, index=True)
    reservation_date = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="PENDING")
    queue_position = Column(Integer, nullable=True)
    pickup_expiry_date = Column(DateTime, nullable=True)
    copy_id = Column(Integer, nullable=True, index=True)

    __table_args__ = (
        Index('idx_reservation_book_status', 'book_id', 'status'),
        Index('idx_reservation_status_expiry', 'status', 'pickup_expiry_date'),
    )


class ReservationQueueDB(Base):
    """One row per title; locked to serialise writes to that title's queue"""

    __tablename__ = 'reservation_queues'

    book_id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)


class LibraryPolicyDB(Base):
    """Key/value overrides for the lending policy"""

    __tablename__ = 'library_policies'

    policy_name = Column(String(100), primary_key=True)
    policy_value = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class UnitOfWork:
    """A database session plus the events recorded while using it"""

    def __init__(self, session: Session):
        self.session = session
        self.events: List[DomainEvent] = []

    def record(self, event: DomainEvent) -> None:
        self.events.append(event)


class LendingStore:
    """Database access for the lending core"""

    def __init__(self, database_url: str = "sqlite:///./lending.db", echo: bool = False):
        self.database_url = database_url

        engine_kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # All sessions must share the one in-memory database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

        # SQLite has a single writer; run units of work one at a time there
        self._serialize = self.engine.dialect.name == "sqlite"
        self._lock = threading.RLock()

        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a raw database session"""
        return self.SessionLocal()

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Run a block in one transaction; commit on success, roll back on any error"""
        with (self._lock if self._serialize else nullcontext()):
            session = self.get_session()
            uow = UnitOfWork(session)
            try:
                yield uow
                session.commit()
            except DomainException:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error, transaction rolled back: {e}")
                raise Unavailable("database transaction", str(e)) from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self) -> None:
        self.engine.dispose()
