"""
Domain Events
=============

Facts emitted after a lending state change has been committed.
Delivery to audit or notification pipelines is left to subscribers;
events may be delivered more than once, so subscribers must be idempotent.
"""

from typing import Callable, Dict, List, Optional, Type
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4
import logging

from pydantic import BaseModel, Field, ConfigDict

from .value_objects import CopyStatus

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    """Base class for all lending events"""
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    occurred_at: datetime = Field(default_factory=datetime.now, description="Time of the state change")

    @property
    def event_type(self) -> str:
        return type(self).__name__


class CopyStatusChanged(DomainEvent):
    copy_id: int
    from_status: CopyStatus
    to_status: CopyStatus
    version: int


class BorrowingCreated(DomainEvent):
    borrowing_id: int
    copy_id: int
    member_id: int
    due_date: datetime


class BorrowingReturned(DomainEvent):
    borrowing_id: int
    copy_id: int
    member_id: int
    return_date: datetime
    fine_amount: Optional[Decimal] = None


class BorrowingRenewed(DomainEvent):
    borrowing_id: int
    due_date: datetime
    renewal_count: int


class BorrowingLost(DomainEvent):
    borrowing_id: int
    copy_id: int
    member_id: int


class FineIssued(DomainEvent):
    fine_id: int
    borrowing_id: int
    member_id: int
    amount: Decimal


class ReservationReadyForPickup(DomainEvent):
    reservation_id: int
    book_id: int
    member_id: int
    copy_id: int
    pickup_expiry_date: datetime


class ReservationExpired(DomainEvent):
    reservation_id: int
    book_id: int
    member_id: int


class ReservationCancelled(DomainEvent):
    reservation_id: int
    book_id: int
    member_id: int


EventHandler = Callable[[DomainEvent], None]


class EventPublisher:
    """In-process fan-out of committed domain events to subscribers"""

    def __init__(self):
        self._handlers: Dict[Optional[Type[DomainEvent]], List[EventHandler]] = {}

    def subscribe(self, handler: EventHandler, event_type: Optional[Type[DomainEvent]] = None) -> None:
        """Register a handler for one event type, or for every event when event_type is None"""
        self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event: DomainEvent) -> None:
        handlers = self._handlers.get(type(event), []) + self._handlers.get(None, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # The state change is already committed; a broken subscriber must not undo it
                logger.error(f"Event handler failed for {event.event_type} {event.event_id}: {e}", exc_info=True)

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)
