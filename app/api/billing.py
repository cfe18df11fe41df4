from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_tenant_context
from app.db import get_db
from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    ProviderVariant,
    SubscriptionRead,
)
from app.services import api_billing_webhooks as api_billing_webhooks_service
from app.services import subscriptions as subscriptions_service
from app.services.tenant_context import TenantContext

router = APIRouter()


@router.post("/billing/webhooks/lemon-squeezy", tags=["billing-webhooks"])
async def lemon_squeezy_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("X-Signature")
    return api_billing_webhooks_service.process_lemon_squeezy_webhook(
        db=db,
        body=body,
        signature=signature,
    )


@router.get(
    "/billing/subscription",
    response_model=SubscriptionRead,
    tags=["billing"],
)
def get_subscription(
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return subscriptions_service.billing_reconciliation.get_current_subscription(db, context)


@router.post(
    "/billing/checkout",
    response_model=CheckoutResponse,
    tags=["billing"],
)
def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
):
    origin = request.headers.get("origin") or str(request.base_url)
    url = subscriptions_service.billing_reconciliation.create_checkout(
        context, payload.plan_code, origin
    )
    return CheckoutResponse(url=url)


@router.get(
    "/billing/variants",
    response_model=list[ProviderVariant],
    tags=["billing"],
    dependencies=[Depends(get_tenant_context)],
)
def list_variants(product_id: str | None = None):
    return subscriptions_service.list_variants(product_id)
