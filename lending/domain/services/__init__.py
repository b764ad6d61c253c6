"""
Domain Services
===============

Domain services encapsulate business logic that doesn't naturally belong to a single entity.
They orchestrate lending operations and keep the lending invariants consistent.

Available Services:
- PolicyProvider: current lending policy, hot-reloadable
- CopyRegistry: copy state machine with compare-and-set transitions
- ReservationQueue: per-title FIFO reservations and pickup windows
- BorrowingLedger: loan lifecycle and fines
- FineCalculator: late-return penalties
- LendingEngine: transactional entry point composing the above
"""

from .policy_provider import PolicyProvider
from .copy_registry import CopyRegistry, TRANSITIONS, can_transition
from .fine_calculator import FineCalculator
from .reservation_queue import ReservationQueue
from .borrowing_ledger import BorrowingLedger
from .lending_engine import LendingEngine

__all__ = [
    "PolicyProvider",
    "CopyRegistry",
    "TRANSITIONS",
    "can_transition",
    "FineCalculator",
    "ReservationQueue",
    "BorrowingLedger",
    "LendingEngine",
]
