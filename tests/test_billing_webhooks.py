"""Tests for Lemon Squeezy webhook reconciliation."""

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from app.models.billing import (
    BillingWebhookEvent,
    PlanCode,
    Subscription,
    SubscriptionStatus,
)
from app.services import api_billing_webhooks
from app.services import lemon_squeezy
from app.services import subscriptions as subscriptions_service
from app.services.common import as_utc
from app.services.errors import NotFound, PersistenceFailure

SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def lemon_settings(monkeypatch):
    patched = api_billing_webhooks.settings.model_copy(
        update={
            "lemon_webhook_secret": SECRET,
            "lemon_starter_product_id": "111",
            "lemon_pro_product_id": "222",
        }
    )
    monkeypatch.setattr(api_billing_webhooks, "settings", patched)
    monkeypatch.setattr(lemon_squeezy, "settings", patched)
    monkeypatch.setattr(subscriptions_service, "settings", patched)
    return patched


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _payload(
    event_name,
    *,
    tenant=None,
    sub_id="sub_1",
    status="active",
    updated_at="2025-03-01T10:00:00.000000Z",
    plan_code=None,
    **attributes,
):
    custom_data = {}
    if tenant is not None:
        custom_data["tenant_id"] = str(tenant.id)
    if plan_code:
        custom_data["plan_code"] = plan_code
    attrs = {
        "status": status,
        "customer_id": 9001,
        "product_id": 111,
        "variant_id": 5001,
        "created_at": "2025-02-01T10:00:00.000000Z",
        "updated_at": updated_at,
        "renews_at": "2025-04-01T10:00:00.000000Z",
        "ends_at": None,
    }
    attrs.update(attributes)
    return {
        "meta": {"event_name": event_name, "custom_data": custom_data},
        "data": {"type": "subscriptions", "id": sub_id, "attributes": attrs},
    }


def _deliver(db_session, payload, signature=None):
    body = json.dumps(payload).encode()
    response = api_billing_webhooks.process_lemon_squeezy_webhook(
        db=db_session,
        body=body,
        signature=_sign(body) if signature is None else signature,
    )
    return response.status_code, json.loads(response.body)


def _subscription(db_session, tenant):
    return db_session.query(Subscription).filter(Subscription.tenant_id == tenant.id).first()


def test_subscription_created_upserts_row(db_session, tenant, billing_plans):
    status_code, body = _deliver(
        db_session, _payload("subscription_created", tenant=tenant, plan_code="STARTER")
    )

    assert status_code == 200
    assert body == {"received": True}
    subscription = _subscription(db_session, tenant)
    assert subscription.status == SubscriptionStatus.active
    assert subscription.plan_id == billing_plans[PlanCode.starter].id
    assert subscription.provider_subscription_id == "sub_1"
    assert subscription.provider_customer_id == "9001"
    assert subscription.provider_variant_id == "5001"
    assert as_utc(subscription.current_period_end) == datetime(2025, 4, 1, 10, tzinfo=timezone.utc)
    assert db_session.query(BillingWebhookEvent).count() == 1


def test_plan_resolved_from_product_id(db_session, tenant, billing_plans):
    _deliver(db_session, _payload("subscription_created", tenant=tenant, product_id=222))

    assert _subscription(db_session, tenant).plan_id == billing_plans[PlanCode.pro].id


def test_tampered_body_is_rejected_without_logging(db_session, tenant):
    payload = _payload("subscription_created", tenant=tenant)
    signature = _sign(json.dumps(payload).encode())
    payload["data"]["attributes"]["status"] = "expired"

    status_code, _ = _deliver(db_session, payload, signature=signature)

    assert status_code == 401
    assert db_session.query(BillingWebhookEvent).count() == 0
    assert _subscription(db_session, tenant) is None


def test_missing_signature_is_rejected(db_session, tenant):
    status_code, _ = _deliver(db_session, _payload("subscription_created", tenant=tenant), "")

    assert status_code == 401


def test_missing_secret_is_rejected(db_session, tenant, monkeypatch, lemon_settings):
    monkeypatch.setattr(
        api_billing_webhooks,
        "settings",
        lemon_settings.model_copy(update={"lemon_webhook_secret": None}),
    )

    status_code, _ = _deliver(db_session, _payload("subscription_created", tenant=tenant))

    assert status_code == 401


def test_invalid_json_is_bad_request(db_session):
    body = b"{not json"
    response = api_billing_webhooks.process_lemon_squeezy_webhook(
        db=db_session, body=body, signature=_sign(body)
    )

    assert response.status_code == 400


@pytest.mark.parametrize(
    "payload",
    [
        {"meta": "oops", "data": {}},
        {"meta": {"event_name": "subscription_updated"}, "data": "x"},
        {"meta": {"event_name": "subscription_updated"}, "data": {"id": "1", "attributes": "x"}},
        {"meta": {"event_name": "subscription_updated", "custom_data": []}, "data": {"id": "1"}},
        {"meta": {"event_name": ["subscription_updated"]}, "data": {"id": "1"}},
        ["subscription_updated"],
    ],
)
def test_malformed_payload_shape_is_bad_request(db_session, payload):
    assert _deliver(db_session, payload) == (400, {"error": "Invalid payload"})
    assert db_session.query(BillingWebhookEvent).count() == 0


def test_duplicate_delivery_applies_once(db_session, tenant):
    payload = _payload("subscription_created", tenant=tenant)
    assert _deliver(db_session, payload)[0] == 200
    subscription = _subscription(db_session, tenant)
    subscription.status = SubscriptionStatus.past_due
    db_session.commit()

    status_code, body = _deliver(db_session, payload)

    assert (status_code, body) == (200, {"received": True})
    assert _subscription(db_session, tenant).status == SubscriptionStatus.past_due
    assert db_session.query(BillingWebhookEvent).count() == 1


def test_cancel_then_resume_clears_canceled_at(db_session, tenant):
    _deliver(
        db_session,
        _payload(
            "subscription_cancelled",
            tenant=tenant,
            status="cancelled",
            ends_at="2025-04-01T00:00:00.000000Z",
            updated_at="2025-03-01T10:00:00.000000Z",
        ),
    )
    subscription = _subscription(db_session, tenant)
    assert subscription.status == SubscriptionStatus.canceled
    assert as_utc(subscription.canceled_at) == datetime(2025, 4, 1, tzinfo=timezone.utc)

    _deliver(
        db_session,
        _payload(
            "subscription_resumed",
            tenant=tenant,
            status="active",
            updated_at="2025-03-05T10:00:00.000000Z",
        ),
    )

    subscription = _subscription(db_session, tenant)
    assert subscription.status == SubscriptionStatus.active
    assert subscription.canceled_at is None
    assert subscription.expired_at is None


def test_expired_sets_expired_at(db_session, tenant):
    _deliver(
        db_session,
        _payload(
            "subscription_expired",
            tenant=tenant,
            status="expired",
            ends_at="2025-03-31T23:59:59.000000Z",
        ),
    )

    subscription = _subscription(db_session, tenant)
    assert subscription.status == SubscriptionStatus.expired
    assert as_utc(subscription.expired_at) == datetime(2025, 3, 31, 23, 59, 59, tzinfo=timezone.utc)


def test_unresolvable_tenant_is_dropped_but_logged(db_session):
    status_code, body = _deliver(
        db_session,
        _payload("subscription_created", sub_id="sub_unknown"),
    )

    assert (status_code, body) == (200, {"received": True})
    assert db_session.query(Subscription).count() == 0
    event = db_session.query(BillingWebhookEvent).one()
    assert event.tenant_id is None


def test_unknown_tenant_in_custom_data_is_dropped(db_session):
    payload = _payload("subscription_created")
    payload["meta"]["custom_data"]["tenant_id"] = str(uuid.uuid4())

    assert _deliver(db_session, payload)[0] == 200
    assert db_session.query(Subscription).count() == 0


def test_payment_event_resolves_tenant_by_subscription_id(db_session, tenant):
    _deliver(db_session, _payload("subscription_created", tenant=tenant))
    payment = {
        "meta": {"event_name": "subscription_payment_failed", "custom_data": {}},
        "data": {
            "type": "subscription-invoices",
            "id": "inv_77",
            "attributes": {
                "subscription_id": "sub_1",
                "status": "failed",
                "created_at": "2025-04-01T10:00:00.000000Z",
                "updated_at": "2025-04-01T10:00:00.000000Z",
            },
        },
    }

    assert _deliver(db_session, payment)[0] == 200

    subscription = _subscription(db_session, tenant)
    assert subscription.status == SubscriptionStatus.past_due
    assert as_utc(subscription.current_period_end) == datetime(2025, 4, 1, 10, tzinfo=timezone.utc)


def test_stale_event_is_logged_but_not_applied(db_session, tenant):
    _deliver(
        db_session,
        _payload("subscription_updated", tenant=tenant, updated_at="2025-03-05T10:00:00.000000Z"),
    )

    status_code, _ = _deliver(
        db_session,
        _payload(
            "subscription_updated",
            tenant=tenant,
            status="past_due",
            updated_at="2025-03-01T10:00:00.000000Z",
        ),
    )

    assert status_code == 200
    assert _subscription(db_session, tenant).status == SubscriptionStatus.active
    assert db_session.query(BillingWebhookEvent).count() == 2


def test_unknown_status_maps_to_active_with_warning(db_session, tenant, caplog):
    with caplog.at_level(logging.WARNING, logger="app.services.subscriptions"):
        _deliver(db_session, _payload("subscription_updated", tenant=tenant, status="mystery"))

    assert _subscription(db_session, tenant).status == SubscriptionStatus.active
    assert "mystery" in caplog.text


def test_irrelevant_event_is_acknowledged_without_logging(db_session, tenant):
    payload = _payload("order_created", tenant=tenant)

    assert _deliver(db_session, payload) == (200, {"received": True})
    assert db_session.query(BillingWebhookEvent).count() == 0


def test_persistence_failure_returns_server_error(db_session, tenant):
    with patch.object(
        subscriptions_service.BillingReconciliation,
        "process_event",
        side_effect=PersistenceFailure("Failed to persist billing webhook."),
    ):
        status_code, _ = _deliver(db_session, _payload("subscription_created", tenant=tenant))

    assert status_code == 500


def test_get_current_subscription_expires_lapsed_trial(db_session, owner_context, billing_plans):
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    subscriptions_service.billing_reconciliation.start_trial(
        db_session, owner_context, now=start
    )

    current = subscriptions_service.billing_reconciliation.get_current_subscription(
        db_session, owner_context, now=start + timedelta(days=30)
    )

    assert current.status == SubscriptionStatus.expired
    assert current.is_trial_expired is True
    assert current.plan.code == PlanCode.starter


def test_get_current_subscription_keeps_active_trial(db_session, owner_context):
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    subscriptions_service.billing_reconciliation.start_trial(
        db_session, owner_context, now=start
    )

    current = subscriptions_service.billing_reconciliation.get_current_subscription(
        db_session, owner_context, now=start + timedelta(days=3)
    )

    assert current.status == SubscriptionStatus.trialing
    assert current.is_trial_expired is False


def test_get_current_subscription_missing(db_session, owner_context):
    with pytest.raises(NotFound):
        subscriptions_service.billing_reconciliation.get_current_subscription(
            db_session, owner_context
        )
