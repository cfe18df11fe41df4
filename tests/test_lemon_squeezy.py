"""Tests for the Lemon Squeezy client and checkout flow."""

import hashlib
import hmac
import json
import uuid

import httpx
import pytest

from app.models.billing import PlanCode
from app.models.tenant import MemberRole
from app.services import lemon_squeezy
from app.services import subscriptions as subscriptions_service
from app.services.errors import AccessDenied, LedgerError, LedgerValidationError
from app.services.tenant_context import TenantContext


@pytest.fixture()
def lemon_settings(monkeypatch):
    patched = lemon_squeezy.settings.model_copy(
        update={
            "lemon_api_key": "test-key",
            "lemon_store_id": "42",
            "lemon_starter_product_id": "111",
            "lemon_starter_variant_id": None,
            "lemon_pro_product_id": "222",
            "lemon_pro_variant_id": "7002",
        }
    )
    monkeypatch.setattr(lemon_squeezy, "settings", patched)
    monkeypatch.setattr(subscriptions_service, "settings", patched)
    return patched


def _context(role=MemberRole.owner):
    return TenantContext(tenant_id=uuid.uuid4(), user_id=uuid.uuid4(), role=role)


def _variants_response():
    return {
        "data": [
            {"id": "6999", "attributes": {"product_id": 111, "name": "Draft", "status": "draft"}},
            {"id": "7001", "attributes": {"product_id": 111, "name": "Monthly", "status": "published"}},
        ]
    }


def test_verify_webhook_signature():
    body = b'{"meta":{}}'
    signature = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert lemon_squeezy.verify_webhook_signature(body, signature, "secret") is True
    assert lemon_squeezy.verify_webhook_signature(body + b" ", signature, "secret") is False
    assert lemon_squeezy.verify_webhook_signature(body, signature, None) is False
    assert lemon_squeezy.verify_webhook_signature(body, None, "secret") is False


def test_resolve_variant_prefers_published(lemon_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=_variants_response())

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        variant_id = lemon_squeezy.resolve_variant_id(PlanCode.starter, client=client)

    assert variant_id == "7001"
    assert "filter%5Bproduct_id%5D=111" in seen["url"] or "filter[product_id]=111" in seen["url"]
    assert seen["auth"] == "Bearer test-key"


def test_resolve_variant_uses_configured_id(lemon_settings):
    assert lemon_squeezy.resolve_variant_id(PlanCode.pro) == "7002"


def test_create_checkout_sends_custom_data(lemon_settings):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/variants"):
            return httpx.Response(200, json=_variants_response())
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={"data": {"attributes": {"url": "https://shop.example/checkout/abc"}}},
        )

    context = _context()
    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        url = subscriptions_service.billing_reconciliation.create_checkout(
            context, PlanCode.starter, "https://app.example/", client=client
        )

    assert url == "https://shop.example/checkout/abc"
    attributes = captured["body"]["data"]["attributes"]
    assert attributes["checkout_data"]["custom"] == {
        "tenant_id": str(context.tenant_id),
        "plan_code": "STARTER",
        "user_id": str(context.user_id),
    }
    assert attributes["product_options"]["enabled_variants"] == [7001]
    assert attributes["product_options"]["redirect_url"].startswith("https://app.example/")
    assert attributes["product_options"]["redirect_url"].endswith("&plan_code=STARTER")
    assert captured["body"]["data"]["relationships"]["store"]["data"]["id"] == "42"


def test_checkout_rejects_free_plan(lemon_settings):
    with pytest.raises(LedgerValidationError):
        subscriptions_service.billing_reconciliation.create_checkout(
            _context(), PlanCode.free, "https://app.example"
        )


def test_checkout_requires_owner(lemon_settings):
    with pytest.raises(AccessDenied):
        subscriptions_service.billing_reconciliation.create_checkout(
            _context(MemberRole.admin), PlanCode.pro, "https://app.example"
        )


def test_checkout_provider_error_is_surfaced(lemon_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"errors": [{"detail": "bad variant"}]})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(LedgerError) as exc_info:
            subscriptions_service.billing_reconciliation.create_checkout(
                _context(), PlanCode.pro, "https://app.example", client=client
            )

    assert exc_info.value.status_code == 500
    assert "422" in exc_info.value.message


def test_checkout_without_api_key_fails(lemon_settings, monkeypatch):
    monkeypatch.setattr(
        lemon_squeezy, "settings", lemon_settings.model_copy(update={"lemon_api_key": None})
    )

    with pytest.raises(LedgerError):
        subscriptions_service.billing_reconciliation.create_checkout(
            _context(), PlanCode.pro, "https://app.example"
        )


def test_list_variants_flattens_attributes(lemon_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_variants_response())

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        variants = subscriptions_service.list_variants("111", client=client)

    assert variants[1] == {
        "id": "7001",
        "product_id": "111",
        "name": "Monthly",
        "status": "published",
    }
