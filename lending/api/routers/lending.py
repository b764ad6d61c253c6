"""
Lending Router
==============

Inbound lending commands: borrow, return, renew, reserve, cancel and pickup.
Domain errors are translated to HTTP responses by the handlers in main.py.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..dependencies import get_lending_engine
from ...domain.entities import BookCopy, Borrowing, Fine, Reservation
from ...domain.services import LendingEngine
from ...domain.value_objects import CopyCondition

router = APIRouter(prefix="/lending", tags=["lending"])


class BorrowRequest(BaseModel):
    """Request model for a new loan"""
    copy_id: int = Field(..., description="Copy to borrow")
    member_id: int = Field(..., description="Borrowing member")
    due_date: Optional[datetime] = Field(None, description="Override of the policy due date")


class ReturnRequest(BaseModel):
    """Request model for returning a copy"""
    condition: Optional[CopyCondition] = Field(None, description="Condition reported at the desk")


class RenewRequest(BaseModel):
    """Request model for a renewal"""
    new_due_date: Optional[datetime] = Field(None, description="Requested due date; defaults to one more loan period")


class ReserveRequest(BaseModel):
    """Request model for a reservation"""
    book_id: int = Field(..., description="Requested title")
    member_id: int = Field(..., description="Requesting member")


@router.post("/borrowings", response_model=Borrowing, status_code=status.HTTP_201_CREATED)
def borrow(request: BorrowRequest, engine: LendingEngine = Depends(get_lending_engine)) -> Borrowing:
    """Borrow a copy"""
    return engine.borrow(request.copy_id, request.member_id, request.due_date)


@router.get("/borrowings/{borrowing_id}", response_model=Borrowing)
def get_borrowing(borrowing_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> Borrowing:
    return engine.get_borrowing(borrowing_id)


@router.post("/borrowings/{borrowing_id}/return", response_model=Borrowing)
def return_copy(borrowing_id: int, request: ReturnRequest,
                engine: LendingEngine = Depends(get_lending_engine)) -> Borrowing:
    """Return a borrowed copy"""
    return engine.return_copy(borrowing_id, request.condition)


@router.post("/borrowings/{borrowing_id}/renew", response_model=Borrowing)
def renew(borrowing_id: int, request: RenewRequest,
          engine: LendingEngine = Depends(get_lending_engine)) -> Borrowing:
    """Extend a loan"""
    return engine.renew(borrowing_id, request.new_due_date)


@router.get("/borrowings/{borrowing_id}/fines", response_model=List[Fine])
def get_fines(borrowing_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> List[Fine]:
    return engine.fines_for_borrowing(borrowing_id)


@router.post("/reservations", response_model=Reservation, status_code=status.HTTP_201_CREATED)
def reserve(request: ReserveRequest, engine: LendingEngine = Depends(get_lending_engine)) -> Reservation:
    """Join the queue for a title"""
    return engine.reserve(request.book_id, request.member_id)


@router.delete("/reservations/{reservation_id}", response_model=Reservation)
def cancel_reservation(reservation_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> Reservation:
    """Cancel a pending or ready reservation"""
    return engine.cancel_reservation(reservation_id)


@router.post("/reservations/{reservation_id}/pickup", response_model=Borrowing,
             status_code=status.HTTP_201_CREATED)
def pick_up(reservation_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> Borrowing:
    """Collect the copy held for a reservation"""
    return engine.pick_up(reservation_id)


@router.get("/books/{book_id}/copies", response_model=List[BookCopy])
def get_copies(book_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> List[BookCopy]:
    return engine.copies_for_book(book_id)


@router.get("/books/{book_id}/queue", response_model=List[Reservation])
def get_queue(book_id: int, engine: LendingEngine = Depends(get_lending_engine)) -> List[Reservation]:
    """Pending reservations for a title in promotion order"""
    return engine.queue_for_book(book_id)
