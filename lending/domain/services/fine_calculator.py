"""
Fine Calculator
===============

Pure computation of late-return penalties.
"""

from datetime import datetime
from decimal import Decimal

from ..exceptions import InvalidInput
from ..value_objects import LendingPolicy, to_money


class FineCalculator:
    """Late fee = days late * daily rate, capped at the policy maximum"""

    @staticmethod
    def days_late(due_date: datetime, return_date: datetime) -> int:
        """Whole calendar days between due date and return, never negative"""
        if due_date is None or return_date is None:
            raise InvalidInput("return_date", "due and return dates are required", return_date)
        return max(0, (return_date.date() - due_date.date()).days)

    @classmethod
    def compute(cls, due_date: datetime, return_date: datetime, policy: LendingPolicy) -> Decimal:
        days = cls.days_late(due_date, return_date)
        if days == 0:
            return to_money(0)
        return to_money(min(days * policy.fine_per_day, policy.max_fine))
