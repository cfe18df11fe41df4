"""Billing API webhook orchestration."""

from __future__ import annotations

import json
import logging

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.services.errors import PersistenceFailure
from app.services.lemon_squeezy import verify_webhook_signature
from app.services.subscriptions import WebhookOutcome, billing_reconciliation, record_outcome

logger = logging.getLogger(__name__)


def _is_object_or_missing(value) -> bool:
    return value is None or isinstance(value, dict)


def _has_valid_shape(payload: dict) -> bool:
    meta = payload.get("meta")
    data = payload.get("data")
    if not (_is_object_or_missing(meta) and _is_object_or_missing(data)):
        return False
    if meta:
        event_name = meta.get("event_name")
        if event_name is not None and not isinstance(event_name, str):
            return False
        if not _is_object_or_missing(meta.get("custom_data")):
            return False
    return not data or _is_object_or_missing(data.get("attributes"))


def process_lemon_squeezy_webhook(
    *, db: Session, body: bytes, signature: str | None
) -> JSONResponse:
    if not settings.lemon_webhook_secret:
        logger.error("LEMON_WEBHOOK_SECRET is not set; rejecting webhook")
        record_outcome(WebhookOutcome("unauthorized"))
        return JSONResponse({"error": "Webhook secret not configured"}, status_code=401)
    if not verify_webhook_signature(body, signature, settings.lemon_webhook_secret):
        logger.warning("Invalid Lemon Squeezy webhook signature")
        record_outcome(WebhookOutcome("unauthorized"))
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        record_outcome(WebhookOutcome("invalid"))
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)
    if not isinstance(payload, dict) or not _has_valid_shape(payload):
        record_outcome(WebhookOutcome("invalid"))
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    try:
        outcome = billing_reconciliation.process_event(db, payload)
    except PersistenceFailure:
        event_name = (payload.get("meta") or {}).get("event_name")
        record_outcome(WebhookOutcome("failed", event_name))
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    record_outcome(outcome)
    logger.info("Lemon Squeezy webhook %s: %s", outcome.event_name, outcome.outcome)
    return JSONResponse({"received": True}, status_code=200)
