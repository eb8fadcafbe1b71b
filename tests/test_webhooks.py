"""Tests for webhook verification, normalization and settlement."""

from __future__ import annotations

import json
import time
from typing import Any

import pytest

from settlement.checkout import CartRepository, CheckoutOrchestrator
from settlement.errors import ErrorKind
from settlement.orders import Order, OrderEventKind, OrderRepository, OrderStatus
from settlement.payments import PaymentIntentManager
from settlement.store import PaymentStatus
from settlement.webhooks import (
    HMAC_HEADER,
    STRIPE_HEADER,
    Disposition,
    HmacSignature,
    PaymentOutcome,
    StripeSignature,
    WebhookEvent,
    WebhookProcessor,
    parse_payload,
    sign,
)
from tests.helpers import Seeder, SessionFactory, checkout_request, err, ok

SECRET = "whsec_test_secret"


def body(**fields: Any) -> bytes:
    return json.dumps(fields).encode()


def envelope(event_id: str, kind: str, ref: str) -> bytes:
    return body(id=event_id, type=kind, data={"object": {"id": ref, "object": "payment_intent"}})


@pytest.fixture
async def awaiting(
    seed: Seeder,
    orchestrator: CheckoutOrchestrator,
    intents: PaymentIntentManager,
) -> tuple[str, str]:
    """(order_id, provider_ref) for an order awaiting payment, bought from cart-7."""
    await seed.product("tee", price=2500, sizes={"M": 5})
    await seed.cart("cart-7", [("tee", "M", 2, 2500)])
    receipt = ok(
        await orchestrator.checkout(checkout_request("chk-wh", cart_id="cart-7"))
    )
    intent = ok(await intents.create_intent(receipt.order_id))
    return receipt.order_id, intent.payment_intent_id


async def load(db: SessionFactory, orders: OrderRepository, order_id: str) -> Order:
    async with db() as session:
        order = await orders.get(session, order_id)
    assert order is not None
    return order


# ═══════════════════════════════════════════════════════════════════════════════
# Normalization
# ═══════════════════════════════════════════════════════════════════════════════


class TestParsePayload:
    """Payload shapes and identities."""

    def test_envelope(self) -> None:
        event = ok(parse_payload(envelope("evt_1", "payment_intent.succeeded", "pi_1"), {}))

        assert event == WebhookEvent("evt_1", "pi_1", PaymentOutcome.SUCCEEDED)

    def test_envelope_failure_type(self) -> None:
        event = ok(parse_payload(envelope("evt_2", "payment_intent.payment_failed", "pi_1"), {}))

        assert event is not None
        assert event.outcome is PaymentOutcome.FAILED

    def test_unhandled_envelope_type_is_ignored(self) -> None:
        assert ok(parse_payload(envelope("evt_3", "charge.refunded", "ch_1"), {})) is None

    @pytest.mark.parametrize(
        ("fields", "outcome"),
        [
            ({"paymentIntentId": "pi_9", "status": "succeeded"}, PaymentOutcome.SUCCEEDED),
            ({"payment_intent_id": "pi_9", "state": "SUCCESS"}, PaymentOutcome.SUCCEEDED),
            ({"paymentIntentId": "pi_9", "type": "payment_intent.payment_failed"}, PaymentOutcome.FAILED),
            ({"paymentIntentId": "pi_9", "status": "fail"}, PaymentOutcome.FAILED),
        ],
    )
    def test_flat_shapes(self, fields: dict[str, str], outcome: PaymentOutcome) -> None:
        event = ok(parse_payload(body(**fields), {}))

        assert event is not None
        assert event.provider_ref == "pi_9"
        assert event.outcome is outcome

    def test_identity_from_header_first(self) -> None:
        payload = body(paymentIntentId="pi_9", status="succeeded", eventId="evt_body")

        event = ok(parse_payload(payload, {"x-webhook-id": "evt_header"}))

        assert event is not None
        assert event.event_id == "evt_header"

    def test_flat_without_identity_keys_by_reference_and_outcome(self) -> None:
        event = ok(parse_payload(body(paymentIntentId="pi_9", status="succeeded"), {}))

        assert event is not None
        assert event.event_id == "pi_9:succeeded"

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2]",
            body(status="succeeded"),
            body(paymentIntentId="pi_9"),
            body(paymentIntentId="pi_9", status="refunded"),
            body(type="payment_intent.succeeded", data={"object": {}}),
        ],
    )
    def test_malformed(self, payload: bytes) -> None:
        assert err(parse_payload(payload, {"x-webhook-id": "evt"})).kind is ErrorKind.MALFORMED_WEBHOOK


# ═══════════════════════════════════════════════════════════════════════════════
# Signatures
# ═══════════════════════════════════════════════════════════════════════════════


class TestSignatures:
    """HMAC and Stripe-format verification."""

    def test_hmac_accepts_valid_signature(self) -> None:
        payload = body(paymentIntentId="pi_1", status="succeeded")

        assert ok(HmacSignature(SECRET).verify(payload, {HMAC_HEADER: sign(payload, SECRET)})) is None

    def test_hmac_accepts_prefixed_signature(self) -> None:
        payload = b"{}"

        ok(HmacSignature(SECRET).verify(payload, {HMAC_HEADER: "sha256=" + sign(payload, SECRET)}))

    @pytest.mark.parametrize("header", [None, "", "deadbeef"])
    def test_hmac_rejects(self, header: str | None) -> None:
        headers = {} if header is None else {HMAC_HEADER: header}

        result = HmacSignature(SECRET).verify(b"{}", headers)

        assert err(result).kind is ErrorKind.INVALID_SIGNATURE

    def test_stripe_accepts_valid_signature(self) -> None:
        payload = envelope("evt_s", "payment_intent.succeeded", "pi_s")
        timestamp = int(time.time())
        signature = sign(f"{timestamp}.".encode() + payload, SECRET)

        result = StripeSignature(SECRET).verify(
            payload, {STRIPE_HEADER: f"t={timestamp},v1={signature}"}
        )

        assert ok(result) is None

    def test_stripe_rejects_tampered_body(self) -> None:
        payload = envelope("evt_s", "payment_intent.succeeded", "pi_s")
        timestamp = int(time.time())
        signature = sign(f"{timestamp}.".encode() + payload, SECRET)
        tampered = envelope("evt_s", "payment_intent.succeeded", "pi_other")

        result = StripeSignature(SECRET).verify(
            tampered, {STRIPE_HEADER: f"t={timestamp},v1={signature}"}
        )

        assert err(result).kind is ErrorKind.INVALID_SIGNATURE

    def test_stripe_requires_header(self) -> None:
        assert err(StripeSignature(SECRET).verify(b"{}", {})).kind is ErrorKind.INVALID_SIGNATURE


# ═══════════════════════════════════════════════════════════════════════════════
# Settlement
# ═══════════════════════════════════════════════════════════════════════════════


class TestSucceeded:
    """Successful payments."""

    async def test_capture_marks_paid_and_clears_cart(
        self,
        db: SessionFactory,
        seed: Seeder,
        orders: OrderRepository,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting

        receipt = ok(
            await webhooks.process(envelope("evt_ok", "payment_intent.succeeded", ref), {})
        )

        assert receipt.disposition is Disposition.CAPTURED
        assert receipt.order_id == order_id
        order = await load(db, orders, order_id)
        assert order.status is OrderStatus.PAID
        assert order.paid_at is not None
        records = await seed.payment_records(order_id)
        assert records[0].status == PaymentStatus.CAPTURED.value
        assert await seed.cart_lines("cart-7") == 0

    async def test_redelivery_is_idempotent(
        self,
        db: SessionFactory,
        seed: Seeder,
        orders: OrderRepository,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        payload = envelope("evt_twice", "payment_intent.succeeded", ref)

        first = ok(await webhooks.process(payload, {}))
        paid_at = (await load(db, orders, order_id)).paid_at
        second = ok(await webhooks.process(payload, {}))

        assert first.duplicate is False
        assert second.duplicate is True
        assert (await load(db, orders, order_id)).paid_at == paid_at
        assert len(await seed.events(order_id, OrderEventKind.PAYMENT_SUCCEEDED)) == 1
        paid_changes = [
            e
            for e in await seed.events(order_id, OrderEventKind.STATUS_CHANGED)
            if e.details["to"] == "PAID"
        ]
        assert len(paid_changes) == 1

    async def test_new_event_for_settled_record_is_not_reapplied(
        self,
        seed: Seeder,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        ok(await webhooks.process(envelope("evt_a", "payment_intent.succeeded", ref), {}))

        late = ok(
            await webhooks.process(envelope("evt_b", "payment_intent.payment_failed", ref), {})
        )

        assert late.disposition is Disposition.ALREADY_SETTLED
        assert await seed.events(order_id, OrderEventKind.PAYMENT_FAILED) == []


class TestFailed:
    """Failed payments."""

    async def test_failure_marks_failed_and_restores_stock(
        self,
        db: SessionFactory,
        seed: Seeder,
        orders: OrderRepository,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        assert await seed.stock("tee", "M") == 3

        receipt = ok(
            await webhooks.process(body(paymentIntentId=ref, status="failed", eventId="evt_f"), {})
        )

        assert receipt.disposition is Disposition.FAILED
        order = await load(db, orders, order_id)
        assert order.status is OrderStatus.FAILED
        assert order.paid_at is None
        assert await seed.stock("tee", "M") == 5
        kinds = [e.kind for e in await seed.events(order_id)]
        assert OrderEventKind.PAYMENT_FAILED in kinds
        assert OrderEventKind.STOCK_RESTORED in kinds
        assert await seed.cart_lines("cart-7") == 1

    async def test_success_after_failure_is_captured_for_refund(
        self,
        db: SessionFactory,
        seed: Seeder,
        orders: OrderRepository,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        ok(await webhooks.process(body(paymentIntentId=ref, status="failed", eventId="e1"), {}))

        late = ok(
            await webhooks.process(body(paymentIntentId=ref, status="succeeded", eventId="e2"), {})
        )

        assert late.disposition is Disposition.LATE_CAPTURE
        assert late.order_id == order_id
        order = await load(db, orders, order_id)
        assert order.status is OrderStatus.FAILED
        assert order.paid_at is None
        records = await seed.payment_records(order_id)
        assert records[0].status == PaymentStatus.CAPTURED.value
        succeeded = await seed.events(order_id, OrderEventKind.PAYMENT_SUCCEEDED)
        assert succeeded[0].details["refundRequired"] is True
        assert succeeded[0].details["closedAs"] == PaymentStatus.FAILED.value
        assert await seed.stock("tee", "M") == 5
        assert await seed.cart_lines("cart-7") == 1

    async def test_success_after_cancel_is_captured_for_refund(
        self,
        db: SessionFactory,
        seed: Seeder,
        orders: OrderRepository,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        async with db() as session, session.begin():
            ok(await orders.cancel(session, order_id))

        late = ok(await webhooks.process(envelope("evt_late", "payment_intent.succeeded", ref), {}))

        assert late.disposition is Disposition.LATE_CAPTURE
        assert (await load(db, orders, order_id)).status is OrderStatus.CANCELLED
        records = await seed.payment_records(order_id)
        assert records[0].status == PaymentStatus.CAPTURED.value
        succeeded = await seed.events(order_id, OrderEventKind.PAYMENT_SUCCEEDED)
        assert succeeded[0].details["closedAs"] == PaymentStatus.CANCELLED.value

    async def test_failure_after_failure_is_already_settled(
        self,
        seed: Seeder,
        webhooks: WebhookProcessor,
        awaiting: tuple[str, str],
    ) -> None:
        order_id, ref = awaiting
        ok(await webhooks.process(body(paymentIntentId=ref, status="failed", eventId="f1"), {}))

        again = ok(
            await webhooks.process(body(paymentIntentId=ref, status="failed", eventId="f2"), {})
        )

        assert again.disposition is Disposition.ALREADY_SETTLED
        assert len(await seed.events(order_id, OrderEventKind.PAYMENT_FAILED)) == 1


class TestRejected:
    """Deliveries that leave no trace."""

    async def test_bad_signature_not_recorded(
        self, db: SessionFactory, seed: Seeder, orders: OrderRepository, awaiting: tuple[str, str]
    ) -> None:
        order_id, ref = awaiting
        processor = WebhookProcessor(db, verifier=HmacSignature(SECRET), orders=orders)
        payload = envelope("evt_sig", "payment_intent.succeeded", ref)

        result = await processor.process(payload, {"X-Webhook-Signature": "forged"})

        assert err(result).kind is ErrorKind.INVALID_SIGNATURE
        assert await seed.ledger_entries() == 0
        assert (await load(db, orders, order_id)).status is OrderStatus.AWAITING_PAYMENT

    async def test_signed_delivery_accepted(
        self, db: SessionFactory, orders: OrderRepository, awaiting: tuple[str, str]
    ) -> None:
        _, ref = awaiting
        processor = WebhookProcessor(
            db, verifier=HmacSignature(SECRET), orders=orders, carts=CartRepository()
        )
        payload = envelope("evt_signed", "payment_intent.succeeded", ref)

        receipt = ok(await processor.process(payload, {"X-Webhook-Signature": sign(payload, SECRET)}))

        assert receipt.disposition is Disposition.CAPTURED

    async def test_unknown_reference_rolls_back_ledger(
        self, seed: Seeder, webhooks: WebhookProcessor
    ) -> None:
        payload = envelope("evt_unknown", "payment_intent.succeeded", "pi_nobody")

        first = await webhooks.process(payload, {})
        second = await webhooks.process(payload, {})

        assert err(first).kind is ErrorKind.UNKNOWN_PAYMENT_REFERENCE
        assert err(second).kind is ErrorKind.UNKNOWN_PAYMENT_REFERENCE
        assert await seed.ledger_entries() == 0

    async def test_malformed_not_recorded(self, seed: Seeder, webhooks: WebhookProcessor) -> None:
        result = await webhooks.process(b"{broken", {})

        assert err(result).kind is ErrorKind.MALFORMED_WEBHOOK
        assert await seed.ledger_entries() == 0

    async def test_ignored_type_acknowledged_not_recorded(
        self, seed: Seeder, webhooks: WebhookProcessor
    ) -> None:
        receipt = ok(await webhooks.process(envelope("evt_x", "customer.created", "cus_1"), {}))

        assert receipt.disposition is Disposition.IGNORED
        assert receipt.duplicate is False
        assert await seed.ledger_entries() == 0
