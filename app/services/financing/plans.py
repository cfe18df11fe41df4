"""Installment plan orchestration.

Plan creation validates terms, checks the customer belongs to the tenant,
checks funds under the tenant lock, then writes the plan, its full
installment batch and the disbursement movement in a single commit.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.metrics import PLANS_CREATED
from app.models.capital import CashEntryType, CashReferenceType
from app.models.financing import Installment, InstallmentPlan, InstallmentStatus, PlanStatus
from app.models.tenant import Customer, MemberRole
from app.schemas.financing import InstallmentPlanCreate
from app.services.capital import capital_ledger, post_movement, tenant_funds_lock
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_for_tenant,
    round_money,
    validate_enum,
)
from app.services.errors import (
    InsufficientFunds,
    LedgerValidationError,
    NotFound,
    PersistenceFailure,
)
from app.services.financing.amortization import compute_schedule, generate_installments
from app.services.financing.installments import compute_plan_metrics
from app.services.response import ListResponseMixin
from app.services.tenant_context import TenantContext, require_role

logger = logging.getLogger(__name__)

PLAN_FIELDS = (
    "id",
    "tenant_id",
    "customer_id",
    "title",
    "currency",
    "total_price",
    "upfront_paid",
    "finance_amount",
    "monthly_profit_rate",
    "total_months",
    "start_date",
    "business_model",
    "notes",
    "created_at",
    "updated_at",
)


def _validate_terms(payload: InstallmentPlanCreate) -> Decimal:
    if payload.total_months is None or payload.total_months <= 0:
        raise LedgerValidationError("Total months must be greater than zero.")
    total_price = round_money(payload.total_price)
    upfront = round_money(payload.upfront_paid or 0)
    if upfront < 0:
        raise LedgerValidationError("Upfront payment cannot be negative.")
    if upfront >= total_price:
        raise LedgerValidationError("Upfront payment must be less than the total price.")
    return total_price - upfront


def _require_customer(db: Session, context: TenantContext, customer_id) -> Customer:
    customer = db.get(Customer, coerce_uuid(customer_id))
    if not customer or customer.tenant_id != context.tenant_id:
        raise NotFound("Customer not found or access denied.")
    return customer


def plan_detail(plan: InstallmentPlan, today: date | None = None) -> dict:
    data = {field: getattr(plan, field) for field in PLAN_FIELDS}
    data["metrics"] = compute_plan_metrics(plan, list(plan.installments), today)
    return data


class Plans(ListResponseMixin):
    @staticmethod
    def create(
        db: Session, context: TenantContext, payload: InstallmentPlanCreate
    ) -> InstallmentPlan:
        require_role(context, MemberRole.member)
        finance_amount = _validate_terms(payload)
        _require_customer(db, context, payload.customer_id)
        schedule = compute_schedule(
            finance_amount, payload.monthly_profit_rate, payload.total_months
        )
        rows = generate_installments(payload.start_date, finance_amount, schedule)

        with tenant_funds_lock(db, context.tenant_id):
            try:
                capital_ledger.ensure_funds_available(db, context.tenant_id, finance_amount)
            except InsufficientFunds:
                PLANS_CREATED.labels(outcome="insufficient_funds").inc()
                logger.warning(
                    "Rejected plan for tenant %s: finance amount %s exceeds available funds",
                    context.tenant_id,
                    finance_amount,
                )
                raise
            plan = InstallmentPlan(
                tenant_id=context.tenant_id,
                customer_id=coerce_uuid(payload.customer_id),
                title=payload.title,
                currency=(payload.currency or settings.default_currency).upper(),
                total_price=round_money(payload.total_price),
                upfront_paid=round_money(payload.upfront_paid or 0),
                finance_amount=finance_amount,
                monthly_profit_rate=payload.monthly_profit_rate,
                total_months=payload.total_months,
                start_date=payload.start_date,
                business_model=payload.business_model,
                notes=payload.notes,
            )
            db.add(plan)
            db.flush()
            for row in rows:
                db.add(
                    Installment(
                        installment_plan_id=plan.id,
                        tenant_id=context.tenant_id,
                        installment_number=row.installment_number,
                        due_date=row.due_date,
                        amount_due=row.amount_due,
                        amount_paid=Decimal("0.00"),
                        principal_due=row.principal_due,
                        principal_paid=Decimal("0.00"),
                        status=InstallmentStatus.pending,
                    )
                )
            post_movement(
                db,
                context.tenant_id,
                CashEntryType.financing_disbursed,
                finance_amount,
                -1,
                reference_id=plan.id,
                reference_type=CashReferenceType.installment_plan,
                notes=payload.title,
            )
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to create installment plan for tenant %s", context.tenant_id)
                raise PersistenceFailure("Failed to create installment plan.") from exc
        db.refresh(plan)
        PLANS_CREATED.labels(outcome="created").inc()
        logger.info(
            "Created plan %s for tenant %s: financed %s over %d months at %s%%",
            plan.id,
            context.tenant_id,
            finance_amount,
            plan.total_months,
            plan.monthly_profit_rate,
        )
        return plan

    @staticmethod
    def get(db: Session, context: TenantContext, plan_id: str) -> InstallmentPlan:
        return get_for_tenant(
            db, InstallmentPlan, plan_id, context.tenant_id, "Installment plan not found"
        )

    @staticmethod
    def detail(
        db: Session, context: TenantContext, plan_id: str, today: date | None = None
    ) -> dict:
        return plan_detail(Plans.get(db, context, plan_id), today)

    @staticmethod
    def list(
        db: Session,
        context: TenantContext,
        customer_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
        today: date | None = None,
    ):
        query = (
            db.query(InstallmentPlan)
            .options(selectinload(InstallmentPlan.installments))
            .filter(InstallmentPlan.tenant_id == context.tenant_id)
        )
        if customer_id:
            query = query.filter(InstallmentPlan.customer_id == coerce_uuid(customer_id))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": InstallmentPlan.created_at,
                "start_date": InstallmentPlan.start_date,
                "finance_amount": InstallmentPlan.finance_amount,
            },
        )
        if not status:
            return [plan_detail(plan, today) for plan in apply_pagination(query, limit, offset)]
        # Plan status is derived, so filter after computing metrics.
        wanted = validate_enum(status, PlanStatus, "status")
        details = [plan_detail(plan, today) for plan in query.all()]
        matching = [item for item in details if item["metrics"]["status"] == wanted]
        return matching[offset : offset + limit]

    @staticmethod
    def delete(db: Session, context: TenantContext, plan_id: str) -> None:
        """Void a plan that has not collected anything yet.

        The plan's installments go with it and its disbursement is returned
        to available funds.
        """
        require_role(context, MemberRole.admin)
        with tenant_funds_lock(db, context.tenant_id):
            plan = Plans.get(db, context, plan_id)
            if any(item.status == InstallmentStatus.paid for item in plan.installments):
                raise LedgerValidationError(
                    "Plan has recorded payments. Revert them before deleting the plan."
                )
            post_movement(
                db,
                context.tenant_id,
                CashEntryType.financing_released,
                plan.finance_amount,
                1,
                reference_id=plan.id,
                reference_type=CashReferenceType.installment_plan,
                notes=f"Plan deleted: {plan.title}",
            )
            db.delete(plan)
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to delete installment plan %s", plan_id)
                raise PersistenceFailure("Failed to delete installment plan.") from exc
        logger.info("Deleted plan %s for tenant %s", plan_id, context.tenant_id)

