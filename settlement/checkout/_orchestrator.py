"""
Checkout orchestrator — cart to durable PENDING order in one transaction.

    idempotency lookup ──► replay existing order
            │
            ▼
    resolve lines (cart, else priced fallback) ──► EmptyCart
            │
            ▼
    stock check, all shortfalls ──► StockConflict
            │
            ▼
    discount evaluation ──► InvalidDiscount / DiscountMinSubtotal / DiscountExhausted
            │
            ▼
    rates ──► totals
            │
            ▼
    ┌─ one transaction ────────────────────────────┐
    │ order + items, conditional stock decrements, │
    │ conditional discount increment               │
    └──────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Sequence

from kungfu import Result, Ok, Error
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import SessionFactory
from settlement.checkout._cart import CartRepository
from settlement.checkout._rates import RatePolicy, RateQuery, RuleBasedRates, total_of
from settlement.checkout._types import CheckoutReceipt, CheckoutRequest, PricedLine
from settlement.discount import AppliedDiscount, DiscountEvaluator
from settlement.errors import AbortTransaction, SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders import OrderDraft, OrderEventKind, OrderRepository, append_event
from settlement.stock import Shortfall, StockLedger, VariantKey

log = get_logger(__name__)


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex[:16]}"


def demand_by_variant(lines: Sequence[PricedLine]) -> dict[VariantKey, int]:
    """Total requested units per stock unit. Lines without a size are not stock-tracked."""
    demand: dict[VariantKey, int] = {}
    for line in lines:
        if line.size is None:
            continue
        key = VariantKey(line.product_id, line.size)
        demand[key] = demand.get(key, 0) + line.quantity
    return demand


class CheckoutOrchestrator:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        currency: str = "USD",
        rates: RatePolicy | None = None,
        orders: OrderRepository | None = None,
        ledger: StockLedger | None = None,
        discounts: DiscountEvaluator | None = None,
        carts: CartRepository | None = None,
        timeout: float | None = 15.0,
        id_factory: Callable[[], str] = new_order_id,
    ) -> None:
        self._session_factory = session_factory
        self._currency = currency
        self._rates = rates or RuleBasedRates()
        self._ledger = ledger or StockLedger()
        self._orders = orders or OrderRepository(ledger=self._ledger)
        self._discounts = discounts or DiscountEvaluator()
        self._carts = carts or CartRepository()
        self._timeout = timeout
        self._new_id = id_factory

    async def checkout(
        self, request: CheckoutRequest
    ) -> Result[CheckoutReceipt, SettlementError]:
        key = request.idempotency_key
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session, session.begin():
                    return await self._checkout(session, request)
        except AbortTransaction as abort:
            log.info("checkout_aborted", idempotency_key=key, error=abort.error.code)
            return Error(abort.error)
        except IntegrityError:
            # A concurrent request with the same key committed first.
            log.info("checkout_idempotency_race", idempotency_key=key)
            return await self._replay(key)
        except TimeoutError:
            log.error("checkout_timeout", idempotency_key=key, timeout=self._timeout)
            return Error(SettlementErrors.infrastructure("checkout timed out"))
        except SQLAlchemyError as e:
            log.error("checkout_store_error", idempotency_key=key, exc_info=e)
            return Error(SettlementErrors.infrastructure("order store unavailable"))

    async def _replay(self, key: str) -> Result[CheckoutReceipt, SettlementError]:
        try:
            async with self._session_factory() as session:
                existing = await self._orders.find_by_idempotency_key(session, key)
        except SQLAlchemyError as e:
            log.error("checkout_store_error", idempotency_key=key, exc_info=e)
            return Error(SettlementErrors.infrastructure("order store unavailable"))
        if existing is None:
            return Error(SettlementErrors.infrastructure("order creation conflicted"))
        return Ok(CheckoutReceipt.from_order(existing, replayed=True))

    async def _checkout(
        self, session: AsyncSession, request: CheckoutRequest
    ) -> Result[CheckoutReceipt, SettlementError]:
        # 1. Idempotent replay
        existing = await self._orders.find_by_idempotency_key(session, request.idempotency_key)
        if existing is not None:
            log.info("checkout_replayed", order_id=existing.id)
            return Ok(CheckoutReceipt.from_order(existing, replayed=True))

        # 2. Lines
        lines: list[PricedLine] = []
        if request.cart_id is not None:
            lines = await self._carts.load(session, request.cart_id)
        if not lines:
            lines = await self._carts.price_fallback(session, request.lines)
            if lines and request.cart_id is not None:
                # Server-side cart was lost; rebuild it from the client copy.
                await self._carts.replace(session, request.cart_id, lines)
        if not lines:
            return Error(SettlementErrors.empty_cart())

        # 3. Stock, every shortfall
        demand = demand_by_variant(lines)
        shortfalls: list[Shortfall] = []
        for variant, qty in demand.items():
            shortfall = await self._ledger.check_availability(session, variant, qty)
            if shortfall is not None:
                shortfalls.append(shortfall)
        if shortfalls:
            return Error(SettlementErrors.stock_conflict([s.to_dict() for s in shortfalls]))

        # 4. Discount
        subtotal = sum(line.line_total for line in lines)
        applied: AppliedDiscount | None = None
        if request.discount_code:
            match await self._discounts.evaluate(session, request.discount_code, subtotal):
                case Ok(found):
                    applied = found
                case Error(rejected):
                    return Error(rejected.to_error())
        discount = applied.amount if applied else 0

        # 5. Totals
        rates = self._rates.quote(
            RateQuery(
                subtotal=subtotal,
                discount=discount,
                item_count=sum(line.quantity for line in lines),
                destination=request.shipping_address,
                currency=self._currency,
            )
        )
        total = total_of(subtotal, discount, rates)

        # 6. Writes — any failed guard rolls everything back
        order = await self._orders.create(
            session,
            OrderDraft(
                id=self._new_id(),
                idempotency_key=request.idempotency_key,
                currency=self._currency,
                subtotal=subtotal,
                discount=discount,
                tax=rates.tax,
                shipping=rates.shipping,
                total=total,
                tax_inclusive=rates.tax_inclusive,
                email=request.email,
                shipping_address=request.shipping_address.to_dict(),
                items=tuple(line.to_item() for line in lines),
                discount_code_id=applied.code.id if applied else None,
                cart_id=request.cart_id,
            ),
        )

        lost: list[Shortfall] = []
        for variant, qty in demand.items():
            if not await self._ledger.decrement(session, variant, qty):
                available = await self._ledger.available(session, variant)
                lost.append(Shortfall(variant.product_id, variant.size, qty, available))
        if lost:
            raise AbortTransaction(
                SettlementErrors.stock_conflict([s.to_dict() for s in lost])
            )

        if applied is not None:
            if not await self._orders.consume_discount(session, applied.code.id):
                raise AbortTransaction(SettlementErrors.discount_exhausted(applied.code.code))
            append_event(
                session,
                order.id,
                OrderEventKind.DISCOUNT_APPLIED,
                f"Discount {applied.code.code} applied",
                {"code": applied.code.code, "kind": applied.kind.tag, "amount": discount},
            )

        log.info(
            "checkout_completed",
            order_id=order.id,
            subtotal=subtotal,
            discount=discount,
            total=total,
            lines=len(lines),
        )
        return Ok(CheckoutReceipt.from_order(order, replayed=False))


__all__ = ("CheckoutOrchestrator", "new_order_id", "demand_by_variant")
