from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import PlanCode, SubscriptionStatus


class BillingPlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: PlanCode
    active_plan_limit: int | None = None
    customer_limit: int | None = None
    installment_plan_limit: int | None = None


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    plan_id: UUID | None = None
    status: SubscriptionStatus
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    provider_subscription_id: str | None = None
    provider_customer_id: str | None = None
    provider_product_id: str | None = None
    provider_variant_id: str | None = None
    canceled_at: datetime | None = None
    expired_at: datetime | None = None
    plan: BillingPlanRead | None = None
    is_trial_expired: bool = False


class CheckoutRequest(BaseModel):
    plan_code: PlanCode = Field(alias="planCode")

    model_config = ConfigDict(populate_by_name=True)


class CheckoutResponse(BaseModel):
    url: str


class ProviderVariant(BaseModel):
    id: str
    product_id: str | None = None
    name: str | None = None
    status: str | None = None
