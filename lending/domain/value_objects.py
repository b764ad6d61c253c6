"""
Value Objects
=============

Immutable objects that represent concepts with no identity.
They are defined by their attributes rather than identity.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round an amount to whole cents"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_naive_local(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive local time; lending dates are stored naive"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class CopyStatus(str, Enum):
    """Circulation status of a physical copy"""
    AVAILABLE = "AVAILABLE"
    BORROWED = "BORROWED"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"
    LOST = "LOST"
    DAMAGED = "DAMAGED"

    @property
    def can_be_borrowed(self) -> bool:
        return self is CopyStatus.AVAILABLE

    @property
    def is_in_circulation(self) -> bool:
        """Copy is out with a member or held for one"""
        return self in (CopyStatus.BORROWED, CopyStatus.RESERVED)


class CopyCondition(str, Enum):
    """Physical condition of a copy"""
    NEW = "NEW"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    DAMAGED = "DAMAGED"

    @property
    def can_be_borrowed(self) -> bool:
        return self is not CopyCondition.DAMAGED

    @property
    def requires_special_handling(self) -> bool:
        return self in (CopyCondition.POOR, CopyCondition.DAMAGED)


class BorrowingStatus(str, Enum):
    """Loan lifecycle status"""
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"
    LOST = "LOST"

    @property
    def is_open(self) -> bool:
        """Loan still holds the copy"""
        return self in (BorrowingStatus.ACTIVE, BorrowingStatus.OVERDUE)


OPEN_BORROWING_STATUSES = (BorrowingStatus.ACTIVE.value, BorrowingStatus.OVERDUE.value)


class ReservationStatus(str, Enum):
    """Reservation lifecycle status"""
    PENDING = "PENDING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    FULFILLED = "FULFILLED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_held(self) -> bool:
        """Reservation still represents live demand"""
        return self in (ReservationStatus.PENDING, ReservationStatus.READY_FOR_PICKUP)


HELD_RESERVATION_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.READY_FOR_PICKUP.value)


class FineStatus(str, Enum):
    """Fine settlement status"""
    PENDING = "PENDING"
    PAID = "PAID"
    WAIVED = "WAIVED"


class MemberStatus(str, Enum):
    """Library card status of a member"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    LOST = "LOST"
    BLOCKED = "BLOCKED"

    @property
    def can_borrow(self) -> bool:
        return self is MemberStatus.ACTIVE


class LendingPolicy(BaseModel):
    """Snapshot of the configurable lending constants"""
    model_config = ConfigDict(frozen=True)

    loan_period_days: int = Field(14, gt=0, description="Default loan length")
    max_renewals: int = Field(2, ge=0, description="Renewals allowed per loan")
    max_active_borrowings: int = Field(5, gt=0, description="Concurrent open loans per member")
    fine_per_day: Decimal = Field(Decimal("0.50"), ge=0, description="Fine charged per day late")
    max_fine: Decimal = Field(Decimal("20.00"), ge=0, description="Cap for a single fine")
    pickup_window_days: int = Field(3, gt=0, description="Days a ready reservation stays claimable")
    max_outstanding_fines: Decimal = Field(
        Decimal("10.00"), ge=0, description="Unpaid fine total above which borrowing is blocked"
    )

    @field_validator("fine_per_day", "max_fine", "max_outstanding_fines")
    @classmethod
    def round_amounts(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @property
    def loan_period(self) -> timedelta:
        return timedelta(days=self.loan_period_days)

    @property
    def pickup_window(self) -> timedelta:
        return timedelta(days=self.pickup_window_days)
