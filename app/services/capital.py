"""Capital reconciliation: cash ledger, available funds and capital deployed."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.capital import (
    OWNER_CAPITAL_TYPES,
    CashEntryType,
    CashLedgerEntry,
    CashReferenceType,
)
from app.models.financing import Installment, InstallmentPlan
from app.models.tenant import MemberRole
from app.schemas.capital import CapitalEntryCreate
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    round_money,
    validate_enum,
)
from app.services.errors import InsufficientFunds, LedgerValidationError, PersistenceFailure
from app.services.response import ListResponseMixin
from app.services.tenant_context import TenantContext, require_role

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

ENTRY_ROLES = {
    CashEntryType.owner_investment: MemberRole.owner,
    CashEntryType.owner_withdrawal: MemberRole.owner,
    CashEntryType.adjustment: MemberRole.admin,
}

# One lock per tenant seen by this process; bounded by the tenant count.
_LOCAL_LOCKS: dict[str, threading.Lock] = defaultdict(threading.Lock)
_LOCAL_LOCKS_GUARD = threading.Lock()


def _advisory_key(tenant_id) -> int:
    digest = hashlib.sha256(f"tenant-funds:{tenant_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@contextmanager
def tenant_funds_lock(db: Session, tenant_id):
    """Serialize funds-affecting writes for one tenant.

    On PostgreSQL this takes a transaction-scoped advisory lock that is
    released on commit or rollback. Other dialects fall back to a
    process-local lock held for the duration of the block, so the block must
    contain the commit.
    """
    bind = db.get_bind()
    if bind.dialect.name == "postgresql":
        db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": _advisory_key(tenant_id)},
        )
        yield
        return
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS[str(tenant_id)]
    with lock:
        yield


def post_movement(
    db: Session,
    tenant_id,
    entry_type: CashEntryType,
    amount: Decimal,
    direction: int,
    reference_id=None,
    reference_type: CashReferenceType | None = None,
    notes: str | None = None,
) -> CashLedgerEntry | None:
    """Stage a ledger row inside the caller's transaction (no commit).

    Zero-amount movements are skipped.
    """
    amount = round_money(amount)
    if amount == ZERO:
        return None
    if amount < ZERO:
        amount = -amount
        direction = -direction
    entry = CashLedgerEntry(
        tenant_id=coerce_uuid(tenant_id),
        entry_type=entry_type,
        amount=amount,
        direction=direction,
        reference_id=coerce_uuid(reference_id),
        reference_type=reference_type,
        notes=notes,
    )
    db.add(entry)
    return entry


def _signed_total(db: Session, tenant_id, entry_types=None) -> Decimal:
    query = db.query(
        func.coalesce(func.sum(CashLedgerEntry.amount * CashLedgerEntry.direction), 0)
    ).filter(CashLedgerEntry.tenant_id == coerce_uuid(tenant_id))
    if entry_types is not None:
        query = query.filter(CashLedgerEntry.entry_type.in_(entry_types))
    return round_money(query.scalar() or 0)


def _totals_by_type(db: Session, tenant_id) -> dict[CashEntryType, Decimal]:
    rows = (
        db.query(
            CashLedgerEntry.entry_type,
            func.coalesce(
                func.sum(CashLedgerEntry.amount * CashLedgerEntry.direction), 0
            ),
        )
        .filter(CashLedgerEntry.tenant_id == coerce_uuid(tenant_id))
        .group_by(CashLedgerEntry.entry_type)
        .all()
    )
    return {entry_type: round_money(total or 0) for entry_type, total in rows}


def _entry_direction(entry_type: CashEntryType, amount: Decimal) -> tuple[Decimal, int]:
    if entry_type == CashEntryType.owner_investment:
        if amount <= 0:
            raise LedgerValidationError("Amount must be greater than zero.")
        return amount, 1
    if entry_type == CashEntryType.owner_withdrawal:
        if amount <= 0:
            raise LedgerValidationError("Amount must be greater than zero.")
        return amount, -1
    if entry_type == CashEntryType.adjustment:
        if amount == 0:
            raise LedgerValidationError("Adjustment amount cannot be zero.")
        return abs(amount), 1 if amount > 0 else -1
    raise LedgerValidationError(
        f"{entry_type.value} entries are posted by the system, not manually."
    )


class CapitalLedger(ListResponseMixin):
    @staticmethod
    def create_entry(db: Session, context: TenantContext, payload: CapitalEntryCreate):
        """Post a manual capital entry.

        Investments and withdrawals need OWNER, adjustments need ADMIN. A
        withdrawal is checked against available funds under the tenant funds
        lock so it cannot race a plan disbursement.
        """
        entry_type = validate_enum(payload.entry_type, CashEntryType, "entry_type")
        require_role(context, ENTRY_ROLES.get(entry_type, MemberRole.owner))
        amount, direction = _entry_direction(entry_type, round_money(payload.amount))
        with tenant_funds_lock(db, context.tenant_id):
            if entry_type == CashEntryType.owner_withdrawal:
                CapitalLedger.ensure_funds_available(
                    db, context.tenant_id, amount, "Withdrawal exceeds available funds."
                )
            entry = CashLedgerEntry(
                tenant_id=context.tenant_id,
                entry_type=entry_type,
                amount=amount,
                direction=direction,
                notes=payload.notes or None,
            )
            db.add(entry)
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception(
                    "Failed to create capital entry for tenant %s", context.tenant_id
                )
                raise PersistenceFailure("Failed to create capital entry.") from exc
        db.refresh(entry)
        logger.info(
            "Capital entry %s %s%s for tenant %s",
            entry_type.value,
            "-" if direction < 0 else "+",
            amount,
            context.tenant_id,
        )
        return entry

    @staticmethod
    def list(
        db: Session,
        context: TenantContext,
        entry_type: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(CashLedgerEntry).filter(
            CashLedgerEntry.tenant_id == context.tenant_id
        )
        if entry_type:
            query = query.filter(
                CashLedgerEntry.entry_type
                == validate_enum(entry_type, CashEntryType, "entry_type")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": CashLedgerEntry.created_at, "amount": CashLedgerEntry.amount},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def available_funds(db: Session, tenant_id) -> Decimal:
        """Signed sum of every ledger movement for the tenant, all types."""
        return _signed_total(db, tenant_id)

    @staticmethod
    def balance(db: Session, tenant_id) -> Decimal:
        """Owner capital only: investments - withdrawals + adjustments."""
        return _signed_total(db, tenant_id, OWNER_CAPITAL_TYPES)

    @staticmethod
    def equity(db: Session, tenant_id) -> Decimal:
        """Cumulative owner investment; withdrawals do not reduce it."""
        return _signed_total(db, tenant_id, (CashEntryType.owner_investment,))

    @staticmethod
    def capital_deployed(db: Session, tenant_id) -> Decimal:
        """Outstanding principal over installments that are not fully paid."""
        rows = (
            db.query(
                Installment.amount_due,
                Installment.amount_paid,
                Installment.principal_due,
                Installment.principal_paid,
                InstallmentPlan.finance_amount,
                InstallmentPlan.total_months,
            )
            .join(InstallmentPlan, Installment.installment_plan_id == InstallmentPlan.id)
            .filter(Installment.tenant_id == coerce_uuid(tenant_id))
            .all()
        )
        deployed = ZERO
        for amount_due, amount_paid, principal_due, principal_paid, finance, months in rows:
            paid = Decimal(amount_paid or 0)
            if paid >= Decimal(amount_due or 0):
                continue
            if principal_due is not None:
                outstanding = Decimal(principal_due) - Decimal(principal_paid or 0)
            else:
                if not months:
                    continue
                portion = Decimal(finance or 0) / months
                outstanding = portion - paid
            if outstanding > 0:
                deployed += outstanding
        return round_money(deployed)

    @staticmethod
    def stats(db: Session, context: TenantContext) -> dict:
        totals = _totals_by_type(db, context.tenant_id)
        investment = totals.get(CashEntryType.owner_investment, ZERO)
        withdrawal = -totals.get(CashEntryType.owner_withdrawal, ZERO)
        adjustment = totals.get(CashEntryType.adjustment, ZERO)
        return {
            "total_investment": investment,
            "total_withdrawal": withdrawal,
            "total_adjustment": adjustment,
            "balance": investment - withdrawal + adjustment,
            "equity": investment,
            "capital_deployed": CapitalLedger.capital_deployed(db, context.tenant_id),
            "available_funds": round_money(sum(totals.values(), ZERO)),
        }

    @staticmethod
    def ensure_funds_available(
        db: Session,
        tenant_id,
        amount: Decimal,
        message: str = "Finance amount exceeds available funds.",
    ) -> Decimal:
        """Raise InsufficientFunds when ``amount`` exceeds available funds.

        Must run while holding :func:`tenant_funds_lock` for the tenant.
        """
        available = CapitalLedger.available_funds(db, tenant_id)
        if round_money(amount) > available:
            raise InsufficientFunds(
                message,
                details={
                    "requested": str(round_money(amount)),
                    "available": str(available),
                },
            )
        return available


capital_ledger = CapitalLedger()
