"""
Webhook graph — settlement of one provider event as nodnod nodes.

Runs inside the processor's transaction; every node shares its session.

    WebhookContext (injected)
         │
         ▼
    ContextNode
         │
         ▼
    LedgerNode (claims event_id; duplicate claim → not claimed)
         │
         ▼
    LookupNode (payment record by provider_ref, only when claimed)
         │
         ├── StoreErrorNode ─────────┐
         ├── DuplicateNode ──────────┤
         ├── UnknownReferenceNode ───┤
         ├── SettledNode ────────────┤
         ├── LateCaptureNode ────────┼── WebhookOutcome (@polymorphic)
         └── PendingPaymentNode      │             │
                ├── CaptureNode ─────┤             ▼
                └── FailureNode ─────┘      FinalResultNode

State nodes only inspect; exactly one of them validates, so exactly one
outcome case performs writes. An OutcomeError means the processor rolls the
whole transaction back, ledger row included, so the provider's redelivery
is processed again.

Note: no 'from __future__ import annotations' here; nodnod resolves
dependencies from runtime type hints.
"""

from dataclasses import dataclass

from kungfu import Error, Ok, Result
from nodnod import NodeError, case, polymorphic
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement import graph as G
from settlement._types import utcnow
from settlement.checkout import CartRepository
from settlement.errors import SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders import (
    Order,
    OrderEventKind,
    OrderRepository,
    OrderStatus,
    append_event,
)
from settlement.store import PaymentRecordTable, PaymentStatus, ProcessedWebhookEventTable
from settlement.webhooks._types import (
    Disposition,
    PaymentOutcome,
    WebhookEvent,
    WebhookReceipt,
)

log = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Input — Context (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class WebhookContext:
    session: AsyncSession
    event: WebhookEvent
    orders: OrderRepository
    carts: CartRepository


@G.node
class ContextNode:
    def __init__(self, ctx: WebhookContext) -> None:
        self.ctx = ctx

    @classmethod
    def __compose__(cls, ctx: WebhookContext) -> "ContextNode":
        return cls(ctx)


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger + Lookup
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class LedgerNode:
    """Inserts the ledger row in a savepoint. claimed=False: seen before."""

    def __init__(
        self, ctx: WebhookContext, claimed: bool, store_error: str | None = None
    ) -> None:
        self.ctx = ctx
        self.claimed = claimed
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, ctx_node: ContextNode) -> "LedgerNode":
        ctx = ctx_node.ctx
        event = ctx.event
        try:
            async with ctx.session.begin_nested():
                ctx.session.add(
                    ProcessedWebhookEventTable(
                        event_id=event.event_id,
                        provider_ref=event.provider_ref,
                        outcome=event.outcome.value,
                        processed_at=utcnow(),
                    )
                )
        except IntegrityError:
            return cls(ctx, claimed=False)
        except SQLAlchemyError as e:
            log.error("webhook_ledger_error", event_id=event.event_id, exc_info=e)
            return cls(ctx, claimed=False, store_error="webhook ledger unavailable")
        return cls(ctx, claimed=True)


@G.node
class LookupNode:
    def __init__(
        self,
        ctx: WebhookContext,
        claimed: bool,
        record: PaymentRecordTable | None,
        store_error: str | None = None,
    ) -> None:
        self.ctx = ctx
        self.claimed = claimed
        self.record = record
        self.store_error = store_error

    @classmethod
    async def __compose__(cls, ledger: LedgerNode) -> "LookupNode":
        ctx = ledger.ctx
        if ledger.store_error is not None or not ledger.claimed:
            return cls(ctx, ledger.claimed, None, ledger.store_error)
        try:
            record = await ctx.session.scalar(
                select(PaymentRecordTable)
                .where(PaymentRecordTable.provider_ref == ctx.event.provider_ref)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            log.error("webhook_lookup_error", provider_ref=ctx.event.provider_ref, exc_info=e)
            return cls(ctx, True, None, "payment records unavailable")
        return cls(ctx, True, record)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes — Each validates one situation
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class StoreErrorNode:
    def __init__(self, message: str) -> None:
        self.message = message

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "StoreErrorNode":
        if lookup.store_error is None:
            raise NodeError("No store error")
        return cls(lookup.store_error)


@G.node
class DuplicateNode:
    def __init__(self, event: WebhookEvent) -> None:
        self.event = event

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "DuplicateNode":
        if lookup.store_error is not None:
            raise NodeError("Store error")
        if lookup.claimed:
            raise NodeError("First delivery")
        return cls(lookup.ctx.event)


@G.node
class UnknownReferenceNode:
    def __init__(self, event: WebhookEvent) -> None:
        self.event = event

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "UnknownReferenceNode":
        if lookup.store_error is not None or not lookup.claimed:
            raise NodeError("Not a first delivery")
        if lookup.record is not None:
            raise NodeError("Record exists")
        return cls(lookup.ctx.event)


CLOSED_UNPAID = (PaymentStatus.FAILED, PaymentStatus.CANCELLED)


def _late_capture(record: PaymentRecordTable, event: WebhookEvent) -> bool:
    """Money taken on an intent this side already closed."""
    return (
        event.outcome is PaymentOutcome.SUCCEEDED
        and PaymentStatus(record.status) in CLOSED_UNPAID
    )


@G.node
class SettledNode:
    """Record already settled and the event changes nothing. Nothing is re-applied."""

    def __init__(self, event: WebhookEvent, record: PaymentRecordTable) -> None:
        self.event = event
        self.record = record

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "SettledNode":
        if lookup.store_error is not None or not lookup.claimed:
            raise NodeError("Not a first delivery")
        record = lookup.record
        if record is None:
            raise NodeError("No record")
        if not PaymentStatus(record.status).is_terminal:
            raise NodeError("Record pending")
        if _late_capture(record, lookup.ctx.event):
            raise NodeError("Late capture")
        return cls(lookup.ctx.event, record)


@G.node
class LateCaptureNode:
    """Succeeded event for a FAILED or CANCELLED record."""

    def __init__(self, ctx: WebhookContext, record: PaymentRecordTable) -> None:
        self.ctx = ctx
        self.record = record

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "LateCaptureNode":
        if lookup.store_error is not None or not lookup.claimed:
            raise NodeError("Not a first delivery")
        record = lookup.record
        if record is None:
            raise NodeError("No record")
        if not _late_capture(record, lookup.ctx.event):
            raise NodeError("Not a late capture")
        return cls(lookup.ctx, record)


@G.node
class PendingPaymentNode:
    def __init__(self, ctx: WebhookContext, record: PaymentRecordTable) -> None:
        self.ctx = ctx
        self.record = record

    @classmethod
    def __compose__(cls, lookup: LookupNode) -> "PendingPaymentNode":
        if lookup.store_error is not None or not lookup.claimed:
            raise NodeError("Not a first delivery")
        record = lookup.record
        if record is None:
            raise NodeError("No record")
        if PaymentStatus(record.status).is_terminal:
            raise NodeError("Record settled")
        return cls(lookup.ctx, record)


@G.node
class CaptureNode:
    def __init__(self, pending: PendingPaymentNode) -> None:
        self.ctx = pending.ctx
        self.record = pending.record

    @classmethod
    def __compose__(cls, pending: PendingPaymentNode) -> "CaptureNode":
        if pending.ctx.event.outcome is not PaymentOutcome.SUCCEEDED:
            raise NodeError("Not a success")
        return cls(pending)


@G.node
class FailureNode:
    def __init__(self, pending: PendingPaymentNode) -> None:
        self.ctx = pending.ctx
        self.record = pending.record

    @classmethod
    def __compose__(cls, pending: PendingPaymentNode) -> "FailureNode":
        if pending.ctx.event.outcome is not PaymentOutcome.FAILED:
            raise NodeError("Not a failure")
        return cls(pending)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OutcomeOk:
    receipt: WebhookReceipt


@dataclass(frozen=True)
class OutcomeError:
    error: SettlementError


type Outcome = OutcomeOk | OutcomeError


def _receipt(
    disposition: Disposition, event: WebhookEvent, order_id: str | None = None
) -> OutcomeOk:
    return OutcomeOk(
        WebhookReceipt(
            disposition=disposition,
            event_id=event.event_id,
            provider_ref=event.provider_ref,
            order_id=order_id,
        )
    )


async def _settle_record(
    ctx: WebhookContext, record: PaymentRecordTable, status: PaymentStatus
) -> Order | None:
    record.status = status.value
    record.updated_at = utcnow()
    await ctx.session.flush()
    return await ctx.orders.get(ctx.session, record.order_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[Outcome]
class WebhookOutcome:
    @case
    def store_error(cls, node: StoreErrorNode) -> Outcome:
        return OutcomeError(SettlementErrors.infrastructure(node.message))

    @case
    def duplicate(cls, node: DuplicateNode) -> Outcome:
        log.info("webhook_duplicate", event_id=node.event.event_id)
        return _receipt(Disposition.DUPLICATE, node.event)

    @case
    def unknown_reference(cls, node: UnknownReferenceNode) -> Outcome:
        log.warning("webhook_unknown_reference", provider_ref=node.event.provider_ref)
        return OutcomeError(
            SettlementErrors.unknown_payment_reference(node.event.provider_ref)
        )

    @case
    def already_settled(cls, node: SettledNode) -> Outcome:
        log.info(
            "webhook_already_settled",
            event_id=node.event.event_id,
            record_status=node.record.status,
            outcome=node.event.outcome.value,
        )
        return _receipt(Disposition.ALREADY_SETTLED, node.event, node.record.order_id)

    @case
    async def late_capture(cls, node: LateCaptureNode) -> Outcome:
        """Record CAPTURED and flagged for refund. The closed order stays closed."""
        ctx, record = node.ctx, node.record
        closed_as = record.status
        try:
            await _settle_record(ctx, record, PaymentStatus.CAPTURED)
            append_event(
                ctx.session,
                record.order_id,
                OrderEventKind.PAYMENT_SUCCEEDED,
                f"Payment {record.provider_ref} succeeded after the payment was closed",
                {
                    "paymentIntentId": record.provider_ref,
                    "amount": record.amount_cents,
                    "eventId": ctx.event.event_id,
                    "closedAs": closed_as,
                    "refundRequired": True,
                },
            )
        except SQLAlchemyError as e:
            log.error("webhook_capture_error", provider_ref=record.provider_ref, exc_info=e)
            return OutcomeError(SettlementErrors.infrastructure("payment capture not recorded"))

        log.error(
            "payment_captured_after_close",
            order_id=record.order_id,
            provider_ref=record.provider_ref,
            closed_as=closed_as,
            amount=record.amount_cents,
        )
        return _receipt(Disposition.LATE_CAPTURE, ctx.event, record.order_id)

    @case
    async def capture(cls, node: CaptureNode) -> Outcome:
        """Record CAPTURED, order PAID (paidAt once), buyer cart cleared."""
        ctx, record = node.ctx, node.record
        try:
            order = await _settle_record(ctx, record, PaymentStatus.CAPTURED)
            if order is None:
                return OutcomeError(SettlementErrors.order_not_found(record.order_id))

            match await ctx.orders.machine.transition(
                ctx.session,
                order.id,
                OrderStatus.PAID,
                reason="payment_succeeded",
                details={"paymentIntentId": record.provider_ref},
            ):
                case Error(err):
                    return OutcomeError(err)
                case Ok(_):
                    pass

            if order.cart_id is not None:
                await ctx.carts.clear(ctx.session, order.cart_id)

            append_event(
                ctx.session,
                order.id,
                OrderEventKind.PAYMENT_SUCCEEDED,
                f"Payment {record.provider_ref} succeeded",
                {
                    "paymentIntentId": record.provider_ref,
                    "amount": record.amount_cents,
                    "eventId": ctx.event.event_id,
                },
            )
        except SQLAlchemyError as e:
            log.error("webhook_capture_error", provider_ref=record.provider_ref, exc_info=e)
            return OutcomeError(SettlementErrors.infrastructure("payment capture not recorded"))

        log.info("payment_captured", order_id=order.id, provider_ref=record.provider_ref)
        return _receipt(Disposition.CAPTURED, ctx.event, order.id)

    @case
    async def fail(cls, node: FailureNode) -> Outcome:
        """Record FAILED, order FAILED, stock released. Never PAID."""
        ctx, record = node.ctx, node.record
        try:
            order = await _settle_record(ctx, record, PaymentStatus.FAILED)
            if order is None:
                return OutcomeError(SettlementErrors.order_not_found(record.order_id))

            match await ctx.orders.machine.transition(
                ctx.session,
                order.id,
                OrderStatus.FAILED,
                reason="payment_failed",
                details={"paymentIntentId": record.provider_ref},
            ):
                case Error(err):
                    return OutcomeError(err)
                case Ok(transition):
                    pass

            append_event(
                ctx.session,
                order.id,
                OrderEventKind.PAYMENT_FAILED,
                f"Payment {record.provider_ref} failed",
                {"paymentIntentId": record.provider_ref, "eventId": ctx.event.event_id},
            )
            if transition.changed:
                await ctx.orders.restore_stock(ctx.session, order, "payment_failed")
        except SQLAlchemyError as e:
            log.error("webhook_failure_error", provider_ref=record.provider_ref, exc_info=e)
            return OutcomeError(SettlementErrors.infrastructure("payment failure not recorded"))

        log.info("payment_failed", order_id=order.id, provider_ref=record.provider_ref)
        return _receipt(Disposition.FAILED, ctx.event, order.id)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FinalResultNode:
    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: WebhookOutcome) -> "FinalResultNode":
        return cls(outcome.value)

    def to_result(self) -> Result[WebhookReceipt, SettlementError]:
        match self.outcome:
            case OutcomeOk(receipt=receipt):
                return Ok(receipt)
            case OutcomeError(error=error):
                return Error(error)


async def run_webhook(ctx: WebhookContext) -> Result[WebhookReceipt, SettlementError]:
    """Settle one event via the graph. Caller owns the transaction."""
    node = await G.resolve(FinalResultNode, ctx)
    return node.to_result()


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "WebhookContext",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "ContextNode",
    "LedgerNode",
    "LookupNode",
    "StoreErrorNode",
    "DuplicateNode",
    "UnknownReferenceNode",
    "SettledNode",
    "LateCaptureNode",
    "PendingPaymentNode",
    "CaptureNode",
    "FailureNode",
    "WebhookOutcome",
    "FinalResultNode",
    "run_webhook",
)
