"""Lemon Squeezy subscription billing integration."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from app.config import settings
from app.models.billing import PlanCode

logger = logging.getLogger(__name__)

JSON_API_HEADERS = {
    "Accept": "application/vnd.api+json",
    "Content-Type": "application/vnd.api+json",
}


class LemonSqueezyError(Exception):
    """Raised when the provider rejects a request or is not configured."""


def _get_api_key() -> str:
    if not settings.lemon_api_key:
        raise LemonSqueezyError("LEMON_API_KEY is not set.")
    return settings.lemon_api_key


def get_store_id() -> str:
    if not settings.lemon_store_id:
        raise LemonSqueezyError("LEMON_STORE_ID is not set.")
    return settings.lemon_store_id


def get_plan_product_id(plan_code: PlanCode) -> str | None:
    if plan_code == PlanCode.starter:
        return settings.lemon_starter_product_id
    if plan_code == PlanCode.pro:
        return settings.lemon_pro_product_id
    return None


def get_plan_variant_id(plan_code: PlanCode) -> str | None:
    if plan_code == PlanCode.starter:
        return settings.lemon_starter_variant_id
    if plan_code == PlanCode.pro:
        return settings.lemon_pro_variant_id
    return None


def get_plan_code_from_product_id(product_id: Any) -> PlanCode | None:
    if product_id is None or product_id == "":
        return None
    normalized = str(product_id)
    if settings.lemon_starter_product_id and normalized == settings.lemon_starter_product_id:
        return PlanCode.starter
    if settings.lemon_pro_product_id and normalized == settings.lemon_pro_product_id:
        return PlanCode.pro
    return None


def _request(
    method: str,
    path: str,
    *,
    params: dict[str, str] | None = None,
    json: dict[str, Any] | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    headers = {**JSON_API_HEADERS, "Authorization": f"Bearer {_get_api_key()}"}
    url = f"{settings.lemon_api_base_url}{path}"
    if client is None:
        with httpx.Client(timeout=settings.lemon_http_timeout) as own_client:
            resp = own_client.request(method, url, params=params, json=json, headers=headers)
    else:
        resp = client.request(method, url, params=params, json=json, headers=headers)
    if resp.is_error:
        logger.error("Lemon Squeezy %s %s failed: %s", method, path, resp.status_code)
        raise LemonSqueezyError(
            f"Lemon Squeezy API error ({resp.status_code}): {resp.text or resp.reason_phrase}"
        )
    return resp.json()


def list_variants(
    product_id: str | None = None, client: httpx.Client | None = None
) -> list[dict[str, Any]]:
    params = {"filter[product_id]": product_id} if product_id else None
    return _request("GET", "/variants", params=params, client=client).get("data", [])


def resolve_variant_id(plan_code: PlanCode, client: httpx.Client | None = None) -> str:
    """Configured variant id for the plan, else the product's published variant."""
    explicit = get_plan_variant_id(plan_code)
    if explicit:
        return explicit
    product_id = get_plan_product_id(plan_code)
    if not product_id:
        raise LemonSqueezyError(f"No product ID configured for {plan_code.value}.")
    variants = list_variants(product_id, client=client)
    published = [
        item for item in variants if item.get("attributes", {}).get("status") == "published"
    ]
    chosen = (published or variants or [None])[0]
    if not chosen:
        raise LemonSqueezyError(f"No variants found for product {product_id}.")
    return str(chosen["id"])


def create_checkout(
    *,
    store_id: str,
    variant_id: str,
    redirect_url: str,
    custom_data: dict[str, Any] | None = None,
    email: str | None = None,
    name: str | None = None,
    client: httpx.Client | None = None,
) -> str:
    """Create a hosted checkout and return its URL.

    ``custom_data`` is echoed back in ``meta.custom_data`` of every webhook
    for the resulting subscription.
    """
    checkout_data: dict[str, Any] = {"custom": custom_data or {}}
    if email:
        checkout_data["email"] = email
    if name:
        checkout_data["name"] = name
    payload = {
        "data": {
            "type": "checkouts",
            "attributes": {
                "product_options": {
                    "enabled_variants": [int(variant_id)],
                    "redirect_url": redirect_url,
                },
                "checkout_data": checkout_data,
            },
            "relationships": {
                "store": {"data": {"type": "stores", "id": str(store_id)}},
                "variant": {"data": {"type": "variants", "id": str(variant_id)}},
            },
        }
    }
    data = _request("POST", "/checkouts", json=payload, client=client)
    return data["data"]["attributes"]["url"]


def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Verify the hex HMAC-SHA256 ``X-Signature`` over the raw body."""
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode(), signature.strip().encode())
