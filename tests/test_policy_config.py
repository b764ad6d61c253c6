from datetime import timedelta
from decimal import Decimal

import pytest

from lending.domain.database import LibraryPolicyDB
from lending.domain.exceptions import InvalidInput
from lending.domain.services import LendingEngine, PolicyProvider
from lending.infrastructure.config import EngineConfig, PolicyConfig, Settings

from .conftest import DAY0


def test_update_replaces_selected_values(policy):
    updated = policy.update(loan_period_days=21, fine_per_day="0.25")

    assert updated.loan_period == timedelta(days=21)
    assert updated.fine_per_day == Decimal("0.25")
    assert updated.max_renewals == 2
    assert policy.current() is updated


def test_invalid_update_keeps_previous_policy(policy):
    before = policy.current()
    with pytest.raises(InvalidInput) as excinfo:
        policy.update(loan_period_days=0)
    assert excinfo.value.field == "loan_period_days"
    assert policy.current() is before


def test_unknown_policy_field(policy):
    with pytest.raises(InvalidInput):
        policy.update(late_fee_currency="EUR")


def test_policy_change_applies_to_next_borrow(engine, members, copy, policy):
    policy.update(loan_period_days=7)
    borrowing = engine.borrow(copy.copy_id, 1)
    assert borrowing.due_date == DAY0 + timedelta(days=7)


def test_overrides_from_policy_table(store):
    session = store.get_session()
    try:
        session.add_all([
            LibraryPolicyDB(policy_name="max_renewals", policy_value="5"),
            LibraryPolicyDB(policy_name="max_fine", policy_value="12.50"),
            LibraryPolicyDB(policy_name="holiday_mode", policy_value="on"),
        ])
        session.commit()

        provider = PolicyProvider()
        loaded = provider.load_overrides(session)
    finally:
        session.close()

    assert loaded.max_renewals == 5
    assert loaded.max_fine == Decimal("12.50")
    assert loaded.loan_period_days == 14


def test_policy_config_from_environment(monkeypatch):
    monkeypatch.setenv("POLICY_LOAN_PERIOD_DAYS", "21")
    monkeypatch.setenv("POLICY_MAX_OUTSTANDING_FINES", "5")

    provider = PolicyProvider.from_config(PolicyConfig())

    assert provider.current().loan_period_days == 21
    assert provider.current().max_outstanding_fines == Decimal("5.00")


def test_negative_retries_rejected(monkeypatch):
    monkeypatch.setenv("ENGINE_MAX_CONFLICT_RETRIES", "-1")
    with pytest.raises(ValueError):
        EngineConfig()


def test_engine_from_settings(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("POLICY_MAX_ACTIVE_BORROWINGS", "1")
    monkeypatch.setenv("ENGINE_MAX_CONFLICT_RETRIES", "5")

    engine = LendingEngine.from_config(Settings())
    try:
        assert engine.policy.current().max_active_borrowings == 1
        assert engine.max_conflict_retries == 5

        engine.upsert_member(1)
        first = engine.register_copy(book_id=1, copy_number=1)
        engine.register_copy(book_id=1, copy_number=2)
        engine.borrow(first.copy_id, 1)
        assert len(engine.borrowings_for_member(1, open_only=True)) == 1
    finally:
        engine.store.dispose()


def test_aware_datetimes_become_naive_local():
    from datetime import datetime, timezone
    from lending.domain.value_objects import to_naive_local

    aware = datetime(2030, 1, 1, tzinfo=timezone.utc)
    converted = to_naive_local(aware)

    assert converted.tzinfo is None
    assert converted == aware.astimezone().replace(tzinfo=None)
    assert to_naive_local(DAY0) is DAY0
    assert to_naive_local(None) is None
