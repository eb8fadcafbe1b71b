"""
Webhook signature verification. Runs before anything touches the store.

    StripeSignature   ``Stripe-Signature: t=...,v1=...`` via the stripe SDK
    HmacSignature     ``X-Webhook-Signature: <hex hmac-sha256 of the body>``
    Unverified        no secret configured
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from typing import Protocol

import stripe
from kungfu import Error, Ok, Result

from settlement.config import Settings
from settlement.errors import SettlementError, SettlementErrors

STRIPE_HEADER = "stripe-signature"
HMAC_HEADER = "x-webhook-signature"


class SignatureVerifier(Protocol):
    def verify(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[None, SettlementError]: ...


class Unverified:
    def verify(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[None, SettlementError]:
        return Ok(None)


class StripeSignature:
    def __init__(self, secret: str, tolerance: int = 300) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[None, SettlementError]:
        header = headers.get(STRIPE_HEADER)
        if not header:
            return Error(SettlementErrors.invalid_signature("Missing Stripe-Signature header"))
        try:
            stripe.Webhook.construct_event(
                payload.decode("utf-8"), header, self._secret, tolerance=self._tolerance
            )
        except stripe.SignatureVerificationError:
            return Error(SettlementErrors.invalid_signature("Signature verification failed"))
        except ValueError:
            # UnicodeDecodeError included
            return Error(SettlementErrors.malformed_webhook("Body is not valid JSON"))
        return Ok(None)


def sign(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the body, as sent in X-Webhook-Signature."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class HmacSignature:
    def __init__(self, secret: str) -> None:
        self._secret = secret

    def verify(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[None, SettlementError]:
        given = headers.get(HMAC_HEADER, "").removeprefix("sha256=")
        if not given:
            return Error(SettlementErrors.invalid_signature("Missing X-Webhook-Signature header"))
        if not hmac.compare_digest(given, sign(payload, self._secret)):
            return Error(SettlementErrors.invalid_signature("Signature verification failed"))
        return Ok(None)


def build_verifier(settings: Settings) -> SignatureVerifier:
    if not settings.webhook_secret:
        return Unverified()
    if settings.provider == "stripe":
        return StripeSignature(settings.webhook_secret, settings.webhook_tolerance_seconds)
    return HmacSignature(settings.webhook_secret)


__all__ = (
    "SignatureVerifier",
    "Unverified",
    "StripeSignature",
    "HmacSignature",
    "sign",
    "build_verifier",
    "STRIPE_HEADER",
    "HMAC_HEADER",
)
