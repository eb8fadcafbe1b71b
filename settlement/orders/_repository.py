"""
Order repository — durable orders, items, discount usage, compensation.

All writers take the caller's session; the caller decides the transaction
boundary (checkout, cancellation and webhook handling each commit once).
"""

from __future__ import annotations

from kungfu import Result, Ok, Error
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import utcnow
from settlement.errors import SettlementError
from settlement.observability import get_logger
from settlement.orders._events import append_event
from settlement.orders._machine import OrderStateMachine
from settlement.orders._types import (
    Order,
    OrderDraft,
    OrderEventKind,
    OrderStatus,
)
from settlement.stock import StockLedger, VariantKey
from settlement.store import (
    DiscountCodeTable,
    OrderItemTable,
    OrderTable,
    PaymentRecordTable,
    PaymentStatus,
)

log = get_logger(__name__)


class OrderRepository:
    def __init__(
        self,
        ledger: StockLedger | None = None,
        machine: OrderStateMachine | None = None,
    ) -> None:
        self._ledger = ledger or StockLedger()
        self._machine = machine or OrderStateMachine()

    @property
    def machine(self) -> OrderStateMachine:
        return self._machine

    # ───────────────────────────────────────────────────────────────────────────
    # Reads
    # ───────────────────────────────────────────────────────────────────────────

    async def get(self, session: AsyncSession, order_id: str) -> Order | None:
        row = await session.get(OrderTable, order_id, populate_existing=True)
        return Order.from_row(row) if row is not None else None

    async def find_by_idempotency_key(
        self, session: AsyncSession, key: str
    ) -> Order | None:
        row = await session.scalar(
            select(OrderTable)
            .where(OrderTable.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        return Order.from_row(row) if row is not None else None

    # ───────────────────────────────────────────────────────────────────────────
    # Writes
    # ───────────────────────────────────────────────────────────────────────────

    async def create(self, session: AsyncSession, draft: OrderDraft) -> Order:
        """Insert order + items + ORDER_CREATED. Flushes so constraint errors surface here."""
        now = utcnow()
        row = OrderTable(
            id=draft.id,
            idempotency_key=draft.idempotency_key,
            cart_id=draft.cart_id,
            status=OrderStatus.PENDING.value,
            currency=draft.currency,
            subtotal_cents=draft.subtotal,
            discount_cents=draft.discount,
            tax_cents=draft.tax,
            shipping_cents=draft.shipping,
            total_cents=draft.total,
            tax_inclusive=draft.tax_inclusive,
            email=draft.email,
            shipping_address=dict(draft.shipping_address),
            discount_code_id=draft.discount_code_id,
            created_at=now,
            updated_at=now,
            items=[
                OrderItemTable(
                    product_id=item.product_id,
                    sku=item.sku,
                    name=item.name,
                    size=item.size,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price,
                    line_total_cents=item.line_total,
                    customization=(
                        item.customization.to_dict() if item.customization else None
                    ),
                )
                for item in draft.items
            ],
        )
        session.add(row)
        await session.flush()

        append_event(
            session,
            draft.id,
            OrderEventKind.ORDER_CREATED,
            "Order created",
            {"total": draft.total, "items": len(draft.items)},
        )
        return Order.from_row(row)

    async def consume_discount(self, session: AsyncSession, code_id: int) -> bool:
        """Increment usage iff still under the limit. Compare-and-set."""
        result = await session.execute(
            update(DiscountCodeTable)
            .where(
                DiscountCodeTable.id == code_id,
                (DiscountCodeTable.usage_limit.is_(None))
                | (DiscountCodeTable.times_used < DiscountCodeTable.usage_limit),
            )
            .values(times_used=DiscountCodeTable.times_used + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def return_discount(self, session: AsyncSession, code_id: int) -> None:
        await session.execute(
            update(DiscountCodeTable)
            .where(DiscountCodeTable.id == code_id, DiscountCodeTable.times_used > 0)
            .values(times_used=DiscountCodeTable.times_used - 1)
            .execution_options(synchronize_session=False)
        )

    async def restore_stock(
        self, session: AsyncSession, order: Order, reason: str
    ) -> int:
        """Release every stock-tracked item. Returns units restored."""
        restored = 0
        for item in order.items:
            if item.size is None:
                continue
            await self._ledger.release(
                session, VariantKey(item.product_id, item.size), item.quantity
            )
            restored += item.quantity

        if restored:
            append_event(
                session,
                order.id,
                OrderEventKind.STOCK_RESTORED,
                f"Stock restored: {reason}",
                {"reason": reason, "units": restored},
            )
            log.info("stock_restored", order_id=order.id, units=restored, reason=reason)
        return restored

    async def cancel(
        self,
        session: AsyncSession,
        order_id: str,
        reason: str = "customer_request",
    ) -> Result[Order, SettlementError]:
        """
        Cancel from PENDING or AWAITING_PAYMENT.

        Voids pending payment records, returns discount usage and restores
        stock. Cancelling an already-cancelled order is a no-op.
        """
        match await self._machine.transition(
            session, order_id, OrderStatus.CANCELLED, reason=reason
        ):
            case Error(err):
                return Error(err)
            case Ok(transition):
                pass

        order = await self.get(session, order_id)
        assert order is not None

        if not transition.changed:
            return Ok(order)

        await session.execute(
            update(PaymentRecordTable)
            .where(
                PaymentRecordTable.order_id == order_id,
                PaymentRecordTable.status == PaymentStatus.PENDING.value,
            )
            .values(status=PaymentStatus.CANCELLED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if order.discount_code_id is not None:
            await self.return_discount(session, order.discount_code_id)
        await self.restore_stock(session, order, "order_cancelled")

        append_event(
            session,
            order_id,
            OrderEventKind.ORDER_CANCELLED,
            "Order cancelled",
            {"reason": reason},
        )
        log.info("order_cancelled", order_id=order_id, reason=reason)
        return Ok(order)


__all__ = ("OrderRepository",)
