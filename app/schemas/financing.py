from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.financing import BusinessModel, InstallmentStatus, PlanStatus


class InstallmentPlanCreate(BaseModel):
    customer_id: UUID
    title: str = Field(min_length=1, max_length=200)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    total_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    upfront_paid: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    finance_amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    monthly_profit_rate: Decimal = Field(default=Decimal("0"), ge=0, max_digits=7, decimal_places=4)
    total_months: int
    start_date: date
    business_model: BusinessModel = BusinessModel.product_owner
    notes: str | None = None

    @model_validator(mode="after")
    def _validate_finance_amount(self) -> "InstallmentPlanCreate":
        if self.finance_amount is not None:
            expected = self.total_price - self.upfront_paid
            if self.finance_amount != expected:
                raise ValueError("finance_amount must equal total_price - upfront_paid")
        return self


class InstallmentPlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    customer_id: UUID
    title: str
    currency: str
    total_price: Decimal
    upfront_paid: Decimal
    finance_amount: Decimal
    monthly_profit_rate: Decimal
    total_months: int
    start_date: date
    business_model: BusinessModel
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class PlanMetricsRead(BaseModel):
    monthly_amount: Decimal
    total_profit: Decimal
    future_value: Decimal
    status: PlanStatus
    months_paid: int
    next_due_date: date | None = None
    total_paid: Decimal
    remaining_amount: Decimal
    my_revenue: Decimal


class InstallmentPlanDetailRead(InstallmentPlanRead):
    metrics: PlanMetricsRead


class InstallmentPlanStatsRead(BaseModel):
    total_plans: int
    active_plans: int
    completed_plans: int
    overdue_plans: int
    total_finance_amount: Decimal
    total_revenue: Decimal
    total_outstanding: Decimal
    average_monthly_payment: Decimal
    new_plans_this_month: int
    completion_rate: Decimal


class InstallmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    installment_plan_id: UUID
    tenant_id: UUID
    installment_number: int
    due_date: date
    amount_due: Decimal
    amount_paid: Decimal
    principal_due: Decimal | None = None
    principal_paid: Decimal | None = None
    status: InstallmentStatus
    paid_on: date | None = None
    notes: str | None = None


class InstallmentDetailRead(InstallmentRead):
    effective_status: InstallmentStatus
    remaining_due: Decimal
    days_overdue: int
    is_upcoming: bool


class RecordPaymentRequest(BaseModel):
    amount_paid: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    paid_on: date
    notes: str | None = None


class RevertPaymentRequest(BaseModel):
    notes: str | None = None
