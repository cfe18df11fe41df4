"""Tenant-wide plan statistics computed on demand from stored rows."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session, selectinload

from app.models.financing import InstallmentPlan, InstallmentStatus, PlanStatus
from app.services.common import coerce_uuid, round_money
from app.services.financing.installments import compute_plan_metrics
from app.services.tenant_context import TenantContext

ZERO = Decimal("0.00")


def _tenant_plans(db: Session, tenant_id) -> list[InstallmentPlan]:
    return (
        db.query(InstallmentPlan)
        .options(selectinload(InstallmentPlan.installments))
        .filter(InstallmentPlan.tenant_id == coerce_uuid(tenant_id))
        .all()
    )


class FinancingReporting:
    @staticmethod
    def plan_stats(db: Session, context: TenantContext, today: date | None = None) -> dict:
        today = today or date.today()
        plans = _tenant_plans(db, context.tenant_id)
        counts = {status: 0 for status in PlanStatus}
        total_finance = ZERO
        total_revenue = ZERO
        total_outstanding = ZERO
        monthly_total = ZERO
        new_this_month = 0
        for plan in plans:
            metrics = compute_plan_metrics(plan, list(plan.installments), today)
            counts[metrics["status"]] += 1
            total_finance += round_money(plan.finance_amount)
            total_revenue += metrics["my_revenue"]
            total_outstanding += max(ZERO, metrics["remaining_amount"])
            monthly_total += metrics["monthly_amount"]
            created = plan.created_at
            if created and (created.year, created.month) == (today.year, today.month):
                new_this_month += 1
        total = len(plans)
        return {
            "total_plans": total,
            "active_plans": counts[PlanStatus.active],
            "completed_plans": counts[PlanStatus.completed],
            "overdue_plans": counts[PlanStatus.overdue],
            "total_finance_amount": total_finance,
            "total_revenue": round_money(total_revenue),
            "total_outstanding": round_money(total_outstanding),
            "average_monthly_payment": round_money(monthly_total / total) if total else ZERO,
            "new_plans_this_month": new_this_month,
            "completion_rate": (
                round_money(Decimal(counts[PlanStatus.completed]) * 100 / total)
                if total
                else ZERO
            ),
        }

    @staticmethod
    def active_plan_count(db: Session, tenant_id) -> int:
        """Plans with at least one installment not yet paid."""
        count = 0
        for plan in _tenant_plans(db, tenant_id):
            paid = sum(
                1 for item in plan.installments if item.status == InstallmentStatus.paid
            )
            if paid < plan.total_months:
                count += 1
        return count

