from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from lending.domain.database import LendingStore
from lending.domain.events import EventPublisher
from lending.domain.services import LendingEngine, PolicyProvider
from lending.domain.value_objects import LendingPolicy

DAY0 = datetime(2024, 3, 1, 10, 0)
BOOK_ID = 100


class FakeClock:
    """Controllable clock shared by all services of one engine"""

    def __init__(self, now: datetime = DAY0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return PolicyProvider(LendingPolicy(
        loan_period_days=14,
        max_renewals=2,
        max_active_borrowings=2,
        fine_per_day=Decimal("0.50"),
        max_fine=Decimal("20.00"),
        pickup_window_days=3,
        max_outstanding_fines=Decimal("10.00"),
    ))


@pytest.fixture
def store():
    store = LendingStore("sqlite://")
    yield store
    store.dispose()


@pytest.fixture
def events():
    return []


@pytest.fixture
def engine(store, policy, clock, events):
    publisher = EventPublisher()
    publisher.subscribe(events.append)
    return LendingEngine(store, policy=policy, publisher=publisher, clock=clock)


@pytest.fixture
def members(engine):
    return [engine.upsert_member(member_id, name=f"Member {member_id}") for member_id in range(1, 6)]


@pytest.fixture
def copy(engine):
    return engine.register_copy(book_id=BOOK_ID, copy_number=1, location="Main/2/B-14")
