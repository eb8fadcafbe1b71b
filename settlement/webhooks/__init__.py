"""
Webhooks — provider events to settled payments, exactly once per event id.

    from settlement import webhooks as W

    processor = W.WebhookProcessor(session_factory, verifier=W.build_verifier(settings))

    match await processor.process(body, headers):
        case Ok(receipt):
            receipt.duplicate, receipt.disposition
        case Error(e):
            e.kind   # INVALID_SIGNATURE | MALFORMED_WEBHOOK | UNKNOWN_PAYMENT_REFERENCE | ...
"""

from settlement.webhooks._types import (
    Disposition,
    PaymentOutcome,
    WebhookEvent,
    WebhookReceipt,
)
from settlement.webhooks._signature import (
    HMAC_HEADER,
    STRIPE_HEADER,
    HmacSignature,
    SignatureVerifier,
    StripeSignature,
    Unverified,
    build_verifier,
    sign,
)
from settlement.webhooks._parse import parse_payload
from settlement.webhooks._graph import WebhookContext, run_webhook
from settlement.webhooks._processor import WebhookProcessor

__all__ = (
    # Types
    "PaymentOutcome",
    "WebhookEvent",
    "Disposition",
    "WebhookReceipt",
    # Signatures
    "SignatureVerifier",
    "Unverified",
    "StripeSignature",
    "HmacSignature",
    "sign",
    "build_verifier",
    "STRIPE_HEADER",
    "HMAC_HEADER",
    # Processing
    "parse_payload",
    "WebhookContext",
    "run_webhook",
    "WebhookProcessor",
)
