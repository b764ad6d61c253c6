from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from lending.domain.exceptions import InvalidInput
from lending.domain.services import FineCalculator
from lending.domain.value_objects import LendingPolicy

DUE = datetime(2024, 3, 15, 10, 0)
POLICY = LendingPolicy(fine_per_day=Decimal("0.50"), max_fine=Decimal("20.00"))


def test_no_fine_when_returned_on_time():
    assert FineCalculator.compute(DUE, DUE - timedelta(days=2), POLICY) == Decimal("0.00")
    assert FineCalculator.compute(DUE, DUE, POLICY) == Decimal("0.00")


def test_same_calendar_day_is_not_late():
    assert FineCalculator.days_late(DUE, DUE + timedelta(hours=5)) == 0


def test_six_days_late():
    assert FineCalculator.days_late(DUE, DUE + timedelta(days=6)) == 6
    assert FineCalculator.compute(DUE, DUE + timedelta(days=6), POLICY) == Decimal("3.00")


def test_fine_is_capped():
    assert FineCalculator.compute(DUE, DUE + timedelta(days=365), POLICY) == Decimal("20.00")


def test_missing_return_date_is_invalid_input():
    with pytest.raises(InvalidInput):
        FineCalculator.compute(DUE, None, POLICY)
