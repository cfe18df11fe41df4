"""Subscription billing reconciliation.

Provider webhooks are the only thing that moves a tenant's subscription
between statuses. Each delivery is logged under a synthetic idempotency id
in the same transaction as its effect, so a redelivery either finds the log
row and stops, or (after a failed commit) replays from scratch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import WEBHOOK_EVENTS
from app.models.billing import (
    BillingPlan,
    BillingWebhookEvent,
    PlanCode,
    Subscription,
    SubscriptionStatus,
)
from app.models.tenant import MemberRole, Tenant
from app.services import lemon_squeezy
from app.services.common import as_utc, coerce_uuid, validate_enum
from app.services.errors import (
    LedgerError,
    LedgerValidationError,
    NotFound,
    PersistenceFailure,
)
from app.services.tenant_context import TenantContext, require_role

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    "subscription_created",
    "subscription_updated",
    "subscription_cancelled",
    "subscription_resumed",
    "subscription_expired",
    "subscription_paused",
    "subscription_unpaused",
}
PAYMENT_EVENTS = {
    "subscription_payment_success",
    "subscription_payment_failed",
    "subscription_payment_recovered",
    "subscription_payment_refunded",
}
RELEVANT_EVENTS = SUBSCRIPTION_EVENTS | PAYMENT_EVENTS

REACTIVATING_EVENTS = {
    "subscription_created",
    "subscription_updated",
    "subscription_resumed",
    "subscription_unpaused",
}
LIVE_STATUSES = {
    SubscriptionStatus.trialing,
    SubscriptionStatus.active,
    SubscriptionStatus.past_due,
}
PAYMENT_EVENT_STATUS = {
    "subscription_payment_success": SubscriptionStatus.active,
    "subscription_payment_recovered": SubscriptionStatus.active,
    "subscription_payment_failed": SubscriptionStatus.past_due,
}

STATUS_MAP = {
    "on_trial": SubscriptionStatus.trialing,
    "active": SubscriptionStatus.active,
    "paused": SubscriptionStatus.active,
    "past_due": SubscriptionStatus.past_due,
    "unpaid": SubscriptionStatus.past_due,
    "cancelled": SubscriptionStatus.canceled,
    "expired": SubscriptionStatus.expired,
}

CHECKOUT_PLANS = {PlanCode.starter, PlanCode.pro}


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    event_name: str | None = None
    event_id: str | None = None
    tenant_id: str | None = None


def map_status(provider_status: str | None) -> SubscriptionStatus:
    mapped = STATUS_MAP.get(provider_status or "")
    if mapped is None:
        logger.warning(
            "Unrecognized provider subscription status %r; treating as active",
            provider_status,
        )
        return SubscriptionStatus.active
    return mapped


def parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def _resource_id(event_name: str, data: dict, attributes: dict) -> str | None:
    if event_name in PAYMENT_EVENTS:
        sub_id = attributes.get("subscription_id")
        return str(sub_id) if sub_id not in (None, "") else None
    resource = data.get("id")
    return str(resource) if resource not in (None, "") else None


def idempotency_key(event_name: str, data: dict, attributes: dict) -> str:
    """``{event_name}:{provider_resource_id}:{timestamp}``.

    The timestamp is the best one available on the resource: ``updated_at``,
    then ``created_at``.
    """
    resource = data.get("id")
    timestamp = attributes.get("updated_at") or attributes.get("created_at") or ""
    return f"{event_name}:{resource if resource is not None else ''}:{timestamp}"


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _resolve_tenant_id(db: Session, custom_data: dict, provider_subscription_id: str | None):
    raw = custom_data.get("tenant_id")
    if raw:
        try:
            tenant_id = coerce_uuid(raw)
        except LedgerValidationError:
            logger.warning("Ignoring malformed tenant_id %r in webhook custom data", raw)
        else:
            if db.get(Tenant, tenant_id) is not None:
                return tenant_id
            logger.warning("Webhook custom data names unknown tenant %s", tenant_id)
    if provider_subscription_id:
        existing = (
            db.query(Subscription)
            .filter(Subscription.provider_subscription_id == provider_subscription_id)
            .first()
        )
        if existing:
            return existing.tenant_id
    return None


def _resolve_plan_id(db: Session, custom_data: dict, product_id: Any):
    plan_code = None
    raw_code = custom_data.get("plan_code")
    if raw_code:
        try:
            plan_code = validate_enum(raw_code, PlanCode, "plan_code")
        except LedgerValidationError:
            logger.warning("Ignoring unknown plan_code %r in webhook custom data", raw_code)
    if plan_code is None:
        plan_code = lemon_squeezy.get_plan_code_from_product_id(product_id)
    if plan_code is None:
        return None
    plan = db.query(BillingPlan).filter(BillingPlan.code == plan_code).first()
    return plan.id if plan else None


def _subscription_values(
    event_name: str, attributes: dict, provider_subscription_id: str | None, now: datetime
) -> dict[str, Any]:
    if event_name in PAYMENT_EVENTS:
        values: dict[str, Any] = {}
        status = PAYMENT_EVENT_STATUS.get(event_name)
        if status is not None:
            values["status"] = status
        if provider_subscription_id:
            values["provider_subscription_id"] = provider_subscription_id
        return values

    status = map_status(attributes.get("status"))
    values = {
        "status": status,
        "current_period_start": parse_timestamp(attributes.get("created_at")),
        "current_period_end": parse_timestamp(
            attributes.get("renews_at") or attributes.get("ends_at")
        ),
        "provider_subscription_id": provider_subscription_id,
        "provider_customer_id": _str_or_none(attributes.get("customer_id")),
        "provider_product_id": _str_or_none(attributes.get("product_id")),
        "provider_variant_id": _str_or_none(attributes.get("variant_id")),
    }
    ends_at = parse_timestamp(attributes.get("ends_at"))
    if event_name == "subscription_cancelled":
        values["canceled_at"] = ends_at or now
    elif event_name == "subscription_expired":
        values["status"] = SubscriptionStatus.expired
        values["expired_at"] = ends_at or now
    elif event_name in REACTIVATING_EVENTS and status in LIVE_STATUSES:
        values["canceled_at"] = None
        values["expired_at"] = None
    return values


def _upsert_subscription(
    db: Session, existing: Subscription | None, tenant_id, values: dict[str, Any]
) -> None:
    if existing is None:
        db.add(Subscription(tenant_id=tenant_id, **values))
        return
    for key, value in values.items():
        setattr(existing, key, value)


class BillingReconciliation:
    @staticmethod
    def process_event(
        db: Session, payload: dict[str, Any], now: datetime | None = None
    ) -> WebhookOutcome:
        """Apply one verified, parsed webhook payload.

        Raises:
            PersistenceFailure: if the effect could not be committed; the
                idempotency row is rolled back with it so a redelivery retries.
        """
        now = now or datetime.now(timezone.utc)
        meta = payload.get("meta") or {}
        event_name = meta.get("event_name")
        if not event_name or event_name not in RELEVANT_EVENTS:
            return WebhookOutcome("ignored", event_name)

        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        custom_data = meta.get("custom_data") or {}
        event_id = idempotency_key(event_name, data, attributes)

        if db.get(BillingWebhookEvent, event_id) is not None:
            return WebhookOutcome("duplicate", event_name, event_id)
        log_row = BillingWebhookEvent(id=event_id, event_type=event_name)
        db.add(log_row)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            return WebhookOutcome("duplicate", event_name, event_id)

        provider_subscription_id = _resource_id(event_name, data, attributes)
        tenant_id = _resolve_tenant_id(db, custom_data, provider_subscription_id)
        if tenant_id is None:
            logger.warning(
                "Dropping %s webhook %s: tenant could not be resolved", event_name, event_id
            )
            BillingReconciliation._commit(db, event_id)
            return WebhookOutcome("dropped", event_name, event_id)
        log_row.tenant_id = tenant_id

        existing = db.query(Subscription).filter(Subscription.tenant_id == tenant_id).first()
        event_updated_at = parse_timestamp(attributes.get("updated_at"))
        stored_updated_at = as_utc(existing.provider_updated_at) if existing else None
        if (
            event_name in SUBSCRIPTION_EVENTS
            and event_updated_at is not None
            and stored_updated_at is not None
            and event_updated_at < stored_updated_at
        ):
            logger.info(
                "Skipping stale %s webhook %s for tenant %s (event %s < stored %s)",
                event_name,
                event_id,
                tenant_id,
                event_updated_at.isoformat(),
                stored_updated_at.isoformat(),
            )
            BillingReconciliation._commit(db, event_id)
            return WebhookOutcome("stale", event_name, event_id, str(tenant_id))

        values = _subscription_values(event_name, attributes, provider_subscription_id, now)
        if event_name in SUBSCRIPTION_EVENTS:
            plan_id = _resolve_plan_id(db, custom_data, attributes.get("product_id"))
            if plan_id is not None:
                values["plan_id"] = plan_id
            if event_updated_at is not None:
                values["provider_updated_at"] = event_updated_at
        if values and (existing is not None or "status" in values):
            values["updated_at"] = now
            _upsert_subscription(db, existing, tenant_id, values)
        BillingReconciliation._commit(db, event_id)
        logger.info(
            "Applied %s webhook %s to tenant %s (status=%s)",
            event_name,
            event_id,
            tenant_id,
            values.get("status").value if values.get("status") else "unchanged",
        )
        return WebhookOutcome("applied", event_name, event_id, str(tenant_id))

    @staticmethod
    def _commit(db: Session, event_id: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to persist billing webhook %s", event_id)
            raise PersistenceFailure("Failed to persist billing webhook.") from exc

    @staticmethod
    def get_current_subscription(
        db: Session, context: TenantContext, now: datetime | None = None
    ) -> Subscription:
        """The tenant's subscription, expiring an app-managed trial past its end."""
        now = now or datetime.now(timezone.utc)
        subscription = (
            db.query(Subscription).filter(Subscription.tenant_id == context.tenant_id).first()
        )
        if not subscription:
            raise NotFound("No subscription found for this workspace.")
        trial_end = as_utc(subscription.trial_end)
        if (
            subscription.status == SubscriptionStatus.trialing
            and trial_end is not None
            and now > trial_end
            and not subscription.provider_subscription_id
        ):
            subscription.status = SubscriptionStatus.expired
            subscription.expired_at = now
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceFailure("Failed to expire trial subscription.") from exc
            db.refresh(subscription)
            logger.info("Expired trial subscription for tenant %s", context.tenant_id)
        subscription.is_trial_expired = (
            subscription.status == SubscriptionStatus.expired
            and not subscription.provider_subscription_id
        )
        return subscription

    @staticmethod
    def start_trial(
        db: Session,
        context: TenantContext,
        plan_code: PlanCode = PlanCode.starter,
        now: datetime | None = None,
    ) -> Subscription:
        """Create the tenant's trial row if it has no subscription yet."""
        now = now or datetime.now(timezone.utc)
        existing = (
            db.query(Subscription).filter(Subscription.tenant_id == context.tenant_id).first()
        )
        if existing:
            return existing
        plan = db.query(BillingPlan).filter(BillingPlan.code == plan_code).first()
        subscription = Subscription(
            tenant_id=context.tenant_id,
            plan_id=plan.id if plan else None,
            status=SubscriptionStatus.trialing,
            current_period_start=now,
            trial_end=now + timedelta(days=settings.trial_days),
        )
        db.add(subscription)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return (
                db.query(Subscription)
                .filter(Subscription.tenant_id == context.tenant_id)
                .one()
            )
        db.refresh(subscription)
        return subscription

    @staticmethod
    def create_checkout(
        context: TenantContext,
        plan_code: PlanCode,
        origin: str,
        email: str | None = None,
        name: str | None = None,
        client: httpx.Client | None = None,
    ) -> str:
        """Hosted checkout URL for upgrading the tenant to ``plan_code``."""
        require_role(context, MemberRole.owner)
        if plan_code not in CHECKOUT_PLANS:
            raise LedgerValidationError("Invalid plan selection.")
        try:
            variant_id = lemon_squeezy.resolve_variant_id(plan_code, client=client)
            store_id = lemon_squeezy.get_store_id()
            redirect_url = (
                f"{origin.rstrip('/')}{settings.checkout_success_path}"
                f"&plan_code={plan_code.value}"
            )
            url = lemon_squeezy.create_checkout(
                store_id=store_id,
                variant_id=variant_id,
                redirect_url=redirect_url,
                email=email,
                name=name,
                custom_data={
                    "tenant_id": str(context.tenant_id),
                    "plan_code": plan_code.value,
                    "user_id": str(context.user_id) if context.user_id else None,
                },
                client=client,
            )
        except (lemon_squeezy.LemonSqueezyError, httpx.HTTPError) as exc:
            logger.error("Checkout creation failed for tenant %s: %s", context.tenant_id, exc)
            raise LedgerError(str(exc) or "Failed to create checkout.") from exc
        logger.info("Created %s checkout for tenant %s", plan_code.value, context.tenant_id)
        return url


def record_outcome(outcome: WebhookOutcome) -> None:
    WEBHOOK_EVENTS.labels(event=outcome.event_name or "unknown", outcome=outcome.outcome).inc()


def list_variants(product_id: str | None = None, client: httpx.Client | None = None) -> list[dict]:
    """Provider variants flattened for the plan-selection UI."""
    try:
        items = lemon_squeezy.list_variants(product_id, client=client)
    except (lemon_squeezy.LemonSqueezyError, httpx.HTTPError) as exc:
        logger.error("Failed to list provider variants: %s", exc)
        raise LedgerError(str(exc) or "Failed to list variants.") from exc
    variants = []
    for item in items:
        attributes = item.get("attributes") or {}
        product = attributes.get("product_id")
        variants.append(
            {
                "id": str(item.get("id")),
                "product_id": str(product) if product is not None else None,
                "name": attributes.get("name"),
                "status": attributes.get("status"),
            }
        )
    return variants


# Singleton instance for service access
billing_reconciliation = BillingReconciliation()
