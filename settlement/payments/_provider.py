"""
Payment providers — the outbound side of intent creation.

    SimulatedProvider   in-process, deterministic, failure injection for tests
    StripeProvider      stripe SDK, run in a worker thread

Both honour the caller's idempotency key: the same key returns the same
intent, so a retried call never creates a second charge attempt.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from typing import Protocol

import stripe

from settlement._types import Cents
from settlement.config import Settings
from settlement.observability import get_logger
from settlement.payments._types import ProviderIntent

log = get_logger(__name__)


class PaymentProvider(Protocol):
    name: str

    async def create_intent(
        self,
        *,
        order_id: str,
        amount: Cents,
        currency: str,
        idempotency_key: str,
    ) -> ProviderIntent: ...

    async def cancel_intent(self, provider_ref: str) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Simulated
# ═══════════════════════════════════════════════════════════════════════════════


class SimulatedProvider:
    """
    In-process provider.

    References look like ``pi_sim_<hex>``; the client secret is
    ``<ref>_secret``. ``fail_next`` queues exceptions raised by the next
    create calls, one per call.
    """

    name = "simulated"

    def __init__(self) -> None:
        self.create_calls = 0
        self.cancel_calls = 0
        self.intents: dict[str, ProviderIntent] = {}
        self.cancelled: set[str] = set()
        self._by_key: dict[str, str] = {}
        self._failures: deque[Exception] = deque()

    def fail_next(self, *errors: Exception) -> None:
        self._failures.extend(errors)

    async def create_intent(
        self,
        *,
        order_id: str,
        amount: Cents,
        currency: str,
        idempotency_key: str,
    ) -> ProviderIntent:
        self.create_calls += 1
        if self._failures:
            raise self._failures.popleft()

        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            return self.intents[existing]

        ref = f"pi_sim_{uuid.uuid4().hex[:24]}"
        intent = ProviderIntent(
            provider_ref=ref,
            client_secret=f"{ref}_secret",
            amount=amount,
            currency=currency,
        )
        self.intents[ref] = intent
        self._by_key[idempotency_key] = ref
        log.info("simulated_intent_created", order_id=order_id, provider_ref=ref)
        return intent

    async def cancel_intent(self, provider_ref: str) -> None:
        self.cancel_calls += 1
        self.cancelled.add(provider_ref)


# ═══════════════════════════════════════════════════════════════════════════════
# Stripe
# ═══════════════════════════════════════════════════════════════════════════════


class StripeProvider:
    name = "stripe"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def create_intent(
        self,
        *,
        order_id: str,
        amount: Cents,
        currency: str,
        idempotency_key: str,
    ) -> ProviderIntent:
        intent = await asyncio.to_thread(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            metadata={"order_id": order_id},
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
            api_key=self._api_key,
        )
        return ProviderIntent(
            provider_ref=intent.id,
            client_secret=intent.client_secret or "",
            amount=amount,
            currency=currency,
        )

    async def cancel_intent(self, provider_ref: str) -> None:
        await asyncio.to_thread(
            stripe.PaymentIntent.cancel,
            provider_ref,
            api_key=self._api_key,
        )


def build_provider(settings: Settings) -> PaymentProvider:
    if settings.provider == "stripe":
        if not settings.stripe_api_key:
            raise ValueError("SETTLEMENT_STRIPE_API_KEY is required for the stripe provider")
        return StripeProvider(settings.stripe_api_key)
    return SimulatedProvider()


__all__ = ("PaymentProvider", "SimulatedProvider", "StripeProvider", "build_provider")
