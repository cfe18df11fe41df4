"""Installment lifecycle: payment recording, reversal, overdue sweep and
plan-level aggregates derived from installment rows."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.metrics import PAYMENTS_RECORDED
from app.models.capital import CashEntryType, CashReferenceType
from app.models.financing import (
    BusinessModel,
    Installment,
    InstallmentPlan,
    InstallmentStatus,
    PlanStatus,
)
from app.models.tenant import MemberRole
from app.schemas.financing import RecordPaymentRequest, RevertPaymentRequest
from app.services.capital import post_movement
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_for_tenant,
    round_money,
    validate_enum,
)
from app.services.errors import LedgerValidationError, PersistenceFailure
from app.services.financing.amortization import compute_schedule
from app.services.response import ListResponseMixin
from app.services.tenant_context import TenantContext, require_role

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
UPCOMING_WINDOW_DAYS = 7


def effective_status(installment: Installment, today: date | None = None) -> InstallmentStatus:
    """Stored status, with PENDING rows past their due date reported as OVERDUE."""
    today = today or date.today()
    if installment.status == InstallmentStatus.pending and installment.due_date < today:
        return InstallmentStatus.overdue
    return installment.status


def remaining_due(installment: Installment) -> Decimal:
    return max(ZERO, round_money(installment.amount_due - (installment.amount_paid or ZERO)))


def days_overdue(installment: Installment, today: date | None = None) -> int:
    today = today or date.today()
    if effective_status(installment, today) != InstallmentStatus.overdue:
        return 0
    return max(0, (today - installment.due_date).days)


def is_upcoming(
    installment: Installment, today: date | None = None, days_ahead: int = UPCOMING_WINDOW_DAYS
) -> bool:
    today = today or date.today()
    if installment.status != InstallmentStatus.pending:
        return False
    return today <= installment.due_date <= today + timedelta(days=days_ahead)


def installment_detail(installment: Installment, today: date | None = None) -> dict:
    today = today or date.today()
    return {
        "id": installment.id,
        "installment_plan_id": installment.installment_plan_id,
        "tenant_id": installment.tenant_id,
        "installment_number": installment.installment_number,
        "due_date": installment.due_date,
        "amount_due": installment.amount_due,
        "amount_paid": installment.amount_paid,
        "principal_due": installment.principal_due,
        "principal_paid": installment.principal_paid,
        "status": installment.status,
        "paid_on": installment.paid_on,
        "notes": installment.notes,
        "effective_status": effective_status(installment, today),
        "remaining_due": remaining_due(installment),
        "days_overdue": days_overdue(installment, today),
        "is_upcoming": is_upcoming(installment, today),
    }


def compute_plan_metrics(
    plan: InstallmentPlan, installments: list[Installment], today: date | None = None
) -> dict:
    """Derive months paid, totals, status and revenue from stored rows.

    Nothing computed here is persisted; the rows are the only source of truth.
    """
    today = today or date.today()
    schedule = compute_schedule(
        plan.finance_amount, plan.monthly_profit_rate, plan.total_months
    )
    upfront = round_money(plan.upfront_paid or ZERO)
    paid = [item for item in installments if item.status == InstallmentStatus.paid]
    months_paid = len(paid)
    total_paid = upfront + sum((round_money(item.amount_paid or ZERO) for item in paid), ZERO)
    remaining_amount = upfront + schedule.future_value - total_paid

    if months_paid >= plan.total_months:
        status = PlanStatus.completed
    elif any(
        effective_status(item, today) == InstallmentStatus.overdue for item in installments
    ):
        status = PlanStatus.overdue
    else:
        status = PlanStatus.active

    if plan.business_model == BusinessModel.financer_only:
        my_revenue = round_money(schedule.total_profit * months_paid / plan.total_months)
    else:
        my_revenue = total_paid

    unpaid = sorted(
        (item for item in installments if item.status != InstallmentStatus.paid),
        key=lambda item: item.due_date,
    )
    return {
        "monthly_amount": schedule.per_installment_amount,
        "total_profit": schedule.total_profit,
        "future_value": schedule.future_value,
        "status": status,
        "months_paid": months_paid,
        "next_due_date": unpaid[0].due_date if unpaid else None,
        "total_paid": total_paid,
        "remaining_amount": remaining_amount,
        "my_revenue": my_revenue,
    }


def _commit(db: Session, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(message)
        raise PersistenceFailure(message) from exc


class Installments(ListResponseMixin):
    @staticmethod
    def get(db: Session, context: TenantContext, installment_id: str) -> Installment:
        return get_for_tenant(
            db, Installment, installment_id, context.tenant_id, "Installment not found"
        )

    @staticmethod
    def list(
        db: Session,
        context: TenantContext,
        status: str | None,
        installment_plan_id: str | None,
        customer_id: str | None,
        due_from: date | None,
        due_to: date | None,
        overdue_only: bool,
        upcoming_only: bool,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
        today: date | None = None,
    ):
        today = today or date.today()
        query = db.query(Installment).filter(Installment.tenant_id == context.tenant_id)
        if status:
            query = query.filter(
                Installment.status == validate_enum(status, InstallmentStatus, "status")
            )
        if installment_plan_id:
            query = query.filter(
                Installment.installment_plan_id == coerce_uuid(installment_plan_id)
            )
        if customer_id:
            query = query.join(
                InstallmentPlan, Installment.installment_plan_id == InstallmentPlan.id
            ).filter(InstallmentPlan.customer_id == coerce_uuid(customer_id))
        if due_from:
            query = query.filter(Installment.due_date >= due_from)
        if due_to:
            query = query.filter(Installment.due_date <= due_to)
        if overdue_only:
            query = query.filter(
                or_(
                    Installment.status == InstallmentStatus.overdue,
                    and_(
                        Installment.status == InstallmentStatus.pending,
                        Installment.due_date < today,
                    ),
                )
            )
        if upcoming_only:
            query = query.filter(Installment.status == InstallmentStatus.pending).filter(
                Installment.due_date >= today,
                Installment.due_date <= today + timedelta(days=UPCOMING_WINDOW_DAYS),
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "due_date": Installment.due_date,
                "amount_due": Installment.amount_due,
                "installment_number": Installment.installment_number,
                "created_at": Installment.created_at,
            },
        )
        items = apply_pagination(query, limit, offset).all()
        return [installment_detail(item, today) for item in items]

    @staticmethod
    def record_payment(
        db: Session,
        context: TenantContext,
        installment_id: str,
        payload: RecordPaymentRequest,
    ) -> Installment:
        """Settle an installment with whatever amount was received.

        The row becomes PAID whether the amount is short of, equal to, or
        above ``amount_due``; any shortfall stays visible as
        ``amount_due - amount_paid``. A row that is already PAID is refused;
        revert it to PENDING before recording a new payment.

        Raises:
            LedgerValidationError: if the installment is already PAID or the
                amount is negative
        """
        require_role(context, MemberRole.member)
        installment = Installments.get(db, context, installment_id)
        if installment.status == InstallmentStatus.paid:
            raise LedgerValidationError(
                "Installment is already paid. Revert it before recording a new payment."
            )
        amount = round_money(payload.amount_paid)
        if amount < ZERO:
            raise LedgerValidationError("Payment amount cannot be negative.")

        installment.amount_paid = amount
        installment.status = InstallmentStatus.paid
        installment.paid_on = payload.paid_on
        if payload.notes is not None:
            installment.notes = payload.notes
        if installment.principal_due is not None:
            installment.principal_paid = min(amount, installment.principal_due)
        post_movement(
            db,
            context.tenant_id,
            CashEntryType.collection_received,
            amount,
            1,
            reference_id=installment.id,
            reference_type=CashReferenceType.installment,
        )
        _commit(db, "Failed to record installment payment.")
        db.refresh(installment)
        PAYMENTS_RECORDED.labels(outcome="recorded").inc()
        logger.info(
            "Recorded payment %s on installment %s (due %s) for tenant %s",
            amount,
            installment.id,
            installment.amount_due,
            context.tenant_id,
        )
        return installment

    @staticmethod
    def revert_to_pending(
        db: Session,
        context: TenantContext,
        installment_id: str,
        payload: RevertPaymentRequest,
    ) -> Installment:
        """Undo a recorded payment: clears amount_paid and reverses the collection."""
        require_role(context, MemberRole.member)
        installment = Installments.get(db, context, installment_id)
        if installment.status != InstallmentStatus.paid:
            raise LedgerValidationError("Only paid installments can be reverted.")
        previous = round_money(installment.amount_paid or ZERO)
        installment.status = InstallmentStatus.pending
        installment.amount_paid = ZERO
        installment.paid_on = None
        if installment.principal_due is not None:
            installment.principal_paid = ZERO
        if payload.notes is not None:
            installment.notes = payload.notes
        post_movement(
            db,
            context.tenant_id,
            CashEntryType.collection_reversed,
            previous,
            -1,
            reference_id=installment.id,
            reference_type=CashReferenceType.installment,
        )
        _commit(db, "Failed to revert installment payment.")
        db.refresh(installment)
        PAYMENTS_RECORDED.labels(outcome="reverted").inc()
        logger.info(
            "Reverted payment %s on installment %s for tenant %s",
            previous,
            installment.id,
            context.tenant_id,
        )
        return installment

    @staticmethod
    def mark_overdue(db: Session, as_of: date | None = None) -> dict[str, int]:
        """Move PENDING installments past their due date to OVERDUE.

        Runs across all tenants; returns the number of rows moved per tenant.
        """
        as_of = as_of or date.today()
        rows = (
            db.query(Installment)
            .filter(Installment.status == InstallmentStatus.pending)
            .filter(Installment.due_date < as_of)
            .all()
        )
        counts: Counter[str] = Counter()
        for installment in rows:
            installment.status = InstallmentStatus.overdue
            counts[str(installment.tenant_id)] += 1
        if rows:
            _commit(db, "Failed to mark installments overdue.")
        for tenant_id, count in counts.items():
            logger.info("Marked %d installments overdue for tenant %s", count, tenant_id)
        return dict(counts)
