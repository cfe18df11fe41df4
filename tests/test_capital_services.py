"""Tests for the capital ledger."""

from decimal import Decimal

import pytest

from app.models.capital import CashEntryType
from app.schemas.capital import CapitalEntryCreate
from app.services import capital as capital_service
from app.services.capital import capital_ledger, post_movement, tenant_funds_lock
from app.services.errors import AccessDenied, InsufficientFunds, LedgerValidationError


def _entry(db_session, context, entry_type, amount):
    return capital_ledger.create_entry(
        db_session,
        context,
        CapitalEntryCreate(entry_type=entry_type, amount=Decimal(amount)),
    )


def test_owner_entries_set_direction(db_session, owner_context):
    investment = _entry(db_session, owner_context, CashEntryType.owner_investment, "5000.00")
    withdrawal = _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "1200.00")
    adjustment = _entry(db_session, owner_context, CashEntryType.adjustment, "-50.00")

    assert (investment.direction, investment.amount) == (1, Decimal("5000.00"))
    assert (withdrawal.direction, withdrawal.amount) == (-1, Decimal("1200.00"))
    assert (adjustment.direction, adjustment.amount) == (-1, Decimal("50.00"))


@pytest.mark.parametrize(
    "entry_type, amount",
    [
        (CashEntryType.owner_investment, "0.00"),
        (CashEntryType.owner_investment, "-10.00"),
        (CashEntryType.owner_withdrawal, "0.00"),
        (CashEntryType.adjustment, "0.00"),
        (CashEntryType.financing_disbursed, "100.00"),
        (CashEntryType.collection_received, "100.00"),
    ],
)
def test_invalid_entries_are_rejected(db_session, owner_context, entry_type, amount):
    with pytest.raises(LedgerValidationError):
        _entry(db_session, owner_context, entry_type, amount)


def test_viewer_cannot_post_capital(db_session, viewer_context):
    with pytest.raises(AccessDenied):
        _entry(db_session, viewer_context, CashEntryType.owner_investment, "100.00")


def test_available_funds_is_order_independent(db_session, owner_context, other_context):
    investment = (CashEntryType.owner_investment, "3000.00")
    later = [
        (CashEntryType.owner_withdrawal, "500.00"),
        (CashEntryType.adjustment, "25.50"),
    ]
    for entry_type, amount in [investment, *later]:
        _entry(db_session, owner_context, entry_type, amount)
    for entry_type, amount in [investment, *reversed(later)]:
        _entry(db_session, other_context, entry_type, amount)

    first = capital_ledger.available_funds(db_session, owner_context.tenant_id)
    second = capital_ledger.available_funds(db_session, other_context.tenant_id)

    assert first == Decimal("2525.50")
    assert second == first


def test_available_funds_includes_system_movements(db_session, owner_context):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "1000.00")
    post_movement(db_session, owner_context.tenant_id, CashEntryType.financing_disbursed, Decimal("400.00"), -1)
    post_movement(db_session, owner_context.tenant_id, CashEntryType.collection_received, Decimal("150.00"), 1)
    db_session.commit()

    assert capital_ledger.available_funds(db_session, owner_context.tenant_id) == Decimal("750.00")
    assert capital_ledger.balance(db_session, owner_context.tenant_id) == Decimal("1000.00")


def test_post_movement_skips_zero_and_flips_negative(db_session, owner_context):
    assert post_movement(
        db_session, owner_context.tenant_id, CashEntryType.collection_received, Decimal("0"), 1
    ) is None

    entry = post_movement(
        db_session, owner_context.tenant_id, CashEntryType.collection_received, Decimal("-20.00"), 1
    )

    assert (entry.amount, entry.direction) == (Decimal("20.00"), -1)


def test_stats_and_equity(db_session, owner_context):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "4000.00")
    _entry(db_session, owner_context, CashEntryType.owner_investment, "1000.00")
    _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "700.00")
    _entry(db_session, owner_context, CashEntryType.adjustment, "100.00")

    stats = capital_ledger.stats(db_session, owner_context)

    assert stats["total_investment"] == Decimal("5000.00")
    assert stats["total_withdrawal"] == Decimal("700.00")
    assert stats["total_adjustment"] == Decimal("100.00")
    assert stats["balance"] == Decimal("4400.00")
    assert stats["equity"] == Decimal("5000.00")
    assert stats["capital_deployed"] == Decimal("0.00")
    assert stats["available_funds"] == Decimal("4400.00")
    assert capital_ledger.equity(db_session, owner_context.tenant_id) == Decimal("5000.00")


def test_list_entries_filters_by_type(db_session, owner_context):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "4000.00")
    _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "700.00")

    items = capital_ledger.list(
        db_session, owner_context, "OWNER_WITHDRAWAL", "created_at", "desc", 50, 0
    )

    assert [item.entry_type for item in items] == [CashEntryType.owner_withdrawal]


def test_withdrawal_beyond_available_funds_is_rejected(db_session, owner_context):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "100.00")

    with pytest.raises(InsufficientFunds) as exc_info:
        _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "500.00")

    assert exc_info.value.detail["details"] == {"requested": "500.00", "available": "100.00"}
    assert capital_ledger.available_funds(db_session, owner_context.tenant_id) == Decimal("100.00")


def test_withdrawal_counts_funds_already_disbursed(db_session, owner_context):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "1000.00")
    post_movement(db_session, owner_context.tenant_id, CashEntryType.financing_disbursed, Decimal("800.00"), -1)
    db_session.commit()

    with pytest.raises(InsufficientFunds):
        _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "300.00")
    withdrawal = _entry(db_session, owner_context, CashEntryType.owner_withdrawal, "200.00")

    assert withdrawal.amount == Decimal("200.00")
    assert capital_ledger.available_funds(db_session, owner_context.tenant_id) == Decimal("0.00")


@pytest.mark.parametrize(
    "entry_type",
    [CashEntryType.owner_investment, CashEntryType.owner_withdrawal],
)
def test_owner_capital_entries_require_owner(db_session, owner_context, admin_context, entry_type):
    _entry(db_session, owner_context, CashEntryType.owner_investment, "1000.00")

    with pytest.raises(AccessDenied):
        _entry(db_session, admin_context, entry_type, "100.00")


def test_admin_can_post_adjustment(db_session, admin_context, member_context):
    adjustment = _entry(db_session, admin_context, CashEntryType.adjustment, "75.00")

    assert (adjustment.direction, adjustment.amount) == (1, Decimal("75.00"))
    with pytest.raises(AccessDenied):
        _entry(db_session, member_context, CashEntryType.adjustment, "75.00")


def test_local_funds_lock_is_reused_per_tenant(db_session, owner_context, other_context):
    if db_session.get_bind().dialect.name == "postgresql":
        pytest.skip("PostgreSQL uses advisory locks")
    for _ in range(3):
        with tenant_funds_lock(db_session, owner_context.tenant_id):
            pass
    with tenant_funds_lock(db_session, other_context.tenant_id):
        pass

    tenants = {str(owner_context.tenant_id), str(other_context.tenant_id)}
    assert tenants <= set(capital_service._LOCAL_LOCKS)
    lock = capital_service._LOCAL_LOCKS[str(owner_context.tenant_id)]
    with tenant_funds_lock(db_session, owner_context.tenant_id):
        assert capital_service._LOCAL_LOCKS[str(owner_context.tenant_id)] is lock
        assert lock.locked()
    assert not lock.locked()
