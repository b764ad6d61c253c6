"""
Domain Entities
===============

Core business entities that represent the main concepts in the lending domain.
Entities have identity and can change over time while maintaining their identity.

Instances are read-only snapshots handed out by the owning domain service;
state changes always go back through that service.
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, computed_field, model_validator

from .value_objects import (
    CopyStatus, CopyCondition, BorrowingStatus, ReservationStatus,
    FineStatus, MemberStatus
)


class BookCopy(BaseModel):
    """One physical instance of a title"""
    model_config = ConfigDict(from_attributes=True)

    copy_id: int = Field(..., description="Unique copy identifier")
    book_id: int = Field(..., description="Title this copy belongs to")
    copy_number: int = Field(..., gt=0, description="Copy number, unique within the book")
    status: CopyStatus = Field(CopyStatus.AVAILABLE, description="Circulation status")
    condition: CopyCondition = Field(CopyCondition.GOOD, description="Physical condition")
    location: Optional[str] = Field(None, description="Shelf location")
    version: int = Field(1, ge=1, description="Optimistic concurrency counter")
    deleted: bool = Field(False, description="Withdrawn from the catalog")

    @computed_field
    @property
    def is_available(self) -> bool:
        """Copy can be handed to a member right now"""
        return self.status.can_be_borrowed and self.condition.can_be_borrowed and not self.deleted


class Borrowing(BaseModel):
    """One loan of one copy to one member"""
    model_config = ConfigDict(from_attributes=True)

    borrowing_id: int = Field(..., description="Unique borrowing identifier")
    copy_id: int = Field(..., description="Borrowed copy")
    member_id: int = Field(..., description="Borrowing member")
    borrow_date: datetime = Field(..., description="Start of the loan")
    due_date: datetime = Field(..., description="Date the copy is due back")
    return_date: Optional[datetime] = Field(None, description="Actual return date")
    status: BorrowingStatus = Field(BorrowingStatus.ACTIVE, description="Loan status")
    renewal_count: int = Field(0, ge=0, description="Renewals used so far")
    fine_amount: Optional[Decimal] = Field(None, description="Fine charged at return")
    condition_on_return: Optional[CopyCondition] = Field(None, description="Condition reported at return")

    @model_validator(mode="after")
    def check_dates(self) -> "Borrowing":
        if self.due_date < self.borrow_date:
            raise ValueError("due_date must not precede borrow_date")
        return self

    def is_overdue(self, as_of: datetime) -> bool:
        """Open loan past its due date"""
        return self.status.is_open and as_of > self.due_date


class Reservation(BaseModel):
    """Queued demand for a title"""
    model_config = ConfigDict(from_attributes=True)

    reservation_id: int = Field(..., description="Unique reservation identifier")
    book_id: int = Field(..., description="Requested title")
    member_id: int = Field(..., description="Requesting member")
    reservation_date: datetime = Field(..., description="Enqueue time")
    status: ReservationStatus = Field(ReservationStatus.PENDING, description="Reservation status")
    queue_position: Optional[int] = Field(None, ge=1, description="Rank among pending reservations")
    pickup_expiry_date: Optional[datetime] = Field(None, description="End of the pickup window")
    copy_id: Optional[int] = Field(None, description="Copy held for pickup")


class Fine(BaseModel):
    """Monetary penalty tied to a borrowing"""
    model_config = ConfigDict(from_attributes=True)

    fine_id: int = Field(..., description="Unique fine identifier")
    borrowing_id: int = Field(..., description="Penalised borrowing")
    member_id: int = Field(..., description="Member owing the fine")
    amount: Decimal = Field(..., ge=0, description="Fine amount")
    reason: Optional[str] = Field(None, description="Why the fine was issued")
    status: FineStatus = Field(FineStatus.PENDING, description="Settlement status")
    created_at: Optional[datetime] = Field(None, description="Issue time")
    settled_at: Optional[datetime] = Field(None, description="Payment or waiver time")


class Member(BaseModel):
    """Lending view of a library member"""
    model_config = ConfigDict(from_attributes=True)

    member_id: int = Field(..., description="Unique member identifier")
    name: Optional[str] = Field(None, description="Display name")
    status: MemberStatus = Field(MemberStatus.ACTIVE, description="Library card status")
