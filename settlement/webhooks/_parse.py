"""
Payload normalization.

Two shapes are accepted:

    provider envelope   {"id": "evt_..", "type": "payment_intent.succeeded",
                         "data": {"object": {"id": "pi_.."}}}
    flat                {"paymentIntentId" | "payment_intent_id": "pi_..",
                         "status" | "state" | "type": "succeeded" | "success" | ...}

Event identity: ``X-Webhook-Id`` or ``Idempotency-Key`` header, then
``eventId`` or ``id`` in the body. A flat payload without any identity is
keyed by reference and outcome, so an exact redelivery is still deduplicated.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from kungfu import Error, Ok, Result

from settlement.errors import SettlementError, SettlementErrors
from settlement.webhooks._types import PaymentOutcome, WebhookEvent

ENVELOPE_TYPES: dict[str, PaymentOutcome] = {
    "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentOutcome.FAILED,
}

FLAT_STATUSES: dict[str, PaymentOutcome] = {
    "succeeded": PaymentOutcome.SUCCEEDED,
    "success": PaymentOutcome.SUCCEEDED,
    "failed": PaymentOutcome.FAILED,
    "fail": PaymentOutcome.FAILED,
    **ENVELOPE_TYPES,
}

ID_HEADERS = ("x-webhook-id", "idempotency-key")


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _first(*values: Any) -> str | None:
    return next((v for v in map(_text, values) if v is not None), None)


def _event_id(body: Mapping[str, Any], headers: Mapping[str, str]) -> str | None:
    return _first(*(headers.get(h) for h in ID_HEADERS), body.get("eventId"), body.get("id"))


def parse_payload(
    payload: bytes, headers: Mapping[str, str]
) -> Result[WebhookEvent | None, SettlementError]:
    """
    Normalize a webhook body.

    Returns Ok(None) for provider event types settlement does not handle;
    those are acknowledged and not recorded.
    """
    try:
        body = json.loads(payload)
    except ValueError:
        return Error(SettlementErrors.malformed_webhook("Body is not valid JSON"))
    if not isinstance(body, dict):
        return Error(SettlementErrors.malformed_webhook("Body must be a JSON object"))

    data = body.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if isinstance(obj, dict):
        kind = _text(body.get("type"))
        if kind is None:
            return Error(SettlementErrors.malformed_webhook("Missing event type"))
        outcome = ENVELOPE_TYPES.get(kind)
        if outcome is None:
            return Ok(None)
        reference = _text(obj.get("id"))
        event_id = _event_id(body, headers)
    else:
        reference = _first(body.get("paymentIntentId"), body.get("payment_intent_id"))
        status = _first(body.get("status"), body.get("state"), body.get("type"))
        if status is None:
            return Error(SettlementErrors.malformed_webhook("Missing payment status"))
        outcome = FLAT_STATUSES.get(status.lower())
        if outcome is None:
            return Error(SettlementErrors.malformed_webhook(f"Unsupported payment status {status!r}"))
        event_id = _event_id(body, headers)
        if event_id is None and reference is not None:
            event_id = f"{reference}:{outcome.value}"

    if reference is None:
        return Error(SettlementErrors.malformed_webhook("Missing payment reference"))
    if event_id is None:
        return Error(SettlementErrors.malformed_webhook("Missing event id"))
    return Ok(WebhookEvent(event_id=event_id, provider_ref=reference, outcome=outcome))


__all__ = ("parse_payload", "ENVELOPE_TYPES", "FLAT_STATUSES")
