"""
Settlement service — one object wiring every component to one store.

    service = await SettlementService.create(get_settings())

    await service.checkout(request)
    await service.create_payment_intent(order_id)
    await service.handle_webhook(body, headers)
    await service.get_order(order_id)
    await service.cancel_order(order_id)

Every method returns ``Result[T, SettlementError]``; storage exceptions are
mapped to INFRASTRUCTURE here and never reach the caller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from kungfu import Error, Ok, Result
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from settlement._types import Cents, SessionFactory
from settlement.checkout import (
    CartRepository,
    CheckoutOrchestrator,
    CheckoutReceipt,
    CheckoutRequest,
    RatePolicy,
    RuleBasedRates,
)
from settlement.config import Settings
from settlement.discount import (
    DiscountCheck,
    DiscountCode,
    DiscountDraft,
    DiscountEvaluator,
    create_code,
)
from settlement.errors import AbortTransaction, SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders import Order, OrderRepository, OrderStatus
from settlement.payments import (
    CREATE_INTENT,
    BreakerStatus,
    PaymentIntent,
    PaymentIntentManager,
    PaymentProvider,
    ResilienceContext,
    build_provider,
    pending_refs,
)
from settlement.stock import StockLedger
from settlement.store import create_database
from settlement.webhooks import SignatureVerifier, WebhookProcessor, WebhookReceipt, build_verifier

log = get_logger(__name__)


@dataclass(slots=True)
class SettlementService:
    session_factory: SessionFactory
    orders: OrderRepository
    discounts: DiscountEvaluator
    checkout_orchestrator: CheckoutOrchestrator
    intents: PaymentIntentManager
    webhooks: WebhookProcessor
    resilience: ResilienceContext
    engine: AsyncEngine | None = None

    @classmethod
    def build(
        cls,
        session_factory: SessionFactory,
        *,
        currency: str = "USD",
        provider: PaymentProvider,
        resilience: ResilienceContext | None = None,
        verifier: SignatureVerifier | None = None,
        rates: RatePolicy | None = None,
        engine: AsyncEngine | None = None,
    ) -> SettlementService:
        ledger = StockLedger()
        orders = OrderRepository(ledger=ledger)
        carts = CartRepository()
        discounts = DiscountEvaluator()
        resilience = resilience or ResilienceContext()
        return cls(
            session_factory=session_factory,
            orders=orders,
            discounts=discounts,
            checkout_orchestrator=CheckoutOrchestrator(
                session_factory,
                currency=currency,
                rates=rates or RuleBasedRates(),
                orders=orders,
                ledger=ledger,
                discounts=discounts,
                carts=carts,
            ),
            intents=PaymentIntentManager(
                session_factory, provider, resilience=resilience, machine=orders.machine
            ),
            webhooks=WebhookProcessor(
                session_factory, verifier=verifier, orders=orders, carts=carts
            ),
            resilience=resilience,
            engine=engine,
        )

    @classmethod
    async def create(cls, settings: Settings) -> SettlementService:
        """Open the configured database and wire components from settings."""
        session_factory, engine = await create_database(
            settings.database_url, echo=settings.database_echo
        )
        return cls.build(
            session_factory,
            currency=settings.currency,
            provider=build_provider(settings),
            resilience=ResilienceContext.from_settings(settings),
            verifier=build_verifier(settings),
            engine=engine,
        )

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    # ───────────────────────────────────────────────────────────────────────────
    # Store boundary
    # ───────────────────────────────────────────────────────────────────────────

    async def _read[T](
        self, op: str, fn: Callable[[AsyncSession], Awaitable[Result[T, SettlementError]]]
    ) -> Result[T, SettlementError]:
        try:
            async with self.session_factory() as session:
                return await fn(session)
        except SQLAlchemyError as e:
            log.error("store_error", op=op, exc_info=e)
            return Error(SettlementErrors.infrastructure("order store unavailable"))

    async def _write[T](
        self, op: str, fn: Callable[[AsyncSession], Awaitable[Result[T, SettlementError]]]
    ) -> Result[T, SettlementError]:
        """Run fn in one transaction; an Error result rolls it back."""

        async def guarded(session: AsyncSession) -> Result[T, SettlementError]:
            match await fn(session):
                case Error(err):
                    raise AbortTransaction(err)
                case ok:
                    return ok

        try:
            async with self.session_factory() as session, session.begin():
                return await guarded(session)
        except AbortTransaction as abort:
            return Error(abort.error)
        except SQLAlchemyError as e:
            log.error("store_error", op=op, exc_info=e)
            return Error(SettlementErrors.infrastructure("order store unavailable"))

    # ───────────────────────────────────────────────────────────────────────────
    # Operations
    # ───────────────────────────────────────────────────────────────────────────

    async def checkout(
        self, request: CheckoutRequest
    ) -> Result[CheckoutReceipt, SettlementError]:
        return await self.checkout_orchestrator.checkout(request)

    async def validate_discount(
        self, code: str, subtotal: Cents | None = None
    ) -> Result[DiscountCheck, SettlementError]:
        async def check(session: AsyncSession) -> Result[DiscountCheck, SettlementError]:
            return Ok(await self.discounts.check(session, code, subtotal))

        return await self._read("validate_discount", check)

    async def create_discount(
        self, draft: DiscountDraft
    ) -> Result[DiscountCode, SettlementError]:
        return await self._write("create_discount", lambda s: create_code(s, draft))

    async def create_payment_intent(
        self, order_id: str
    ) -> Result[PaymentIntent, SettlementError]:
        return await self.intents.create_intent(order_id)

    async def handle_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Result[WebhookReceipt, SettlementError]:
        return await self.webhooks.process(payload, headers)

    async def get_order(self, order_id: str) -> Result[Order, SettlementError]:
        async def load(session: AsyncSession) -> Result[Order, SettlementError]:
            order = await self.orders.get(session, order_id)
            if order is None:
                return Error(SettlementErrors.order_not_found(order_id))
            return Ok(order)

        return await self._read("get_order", load)

    async def cancel_order(
        self, order_id: str, reason: str = "customer_request"
    ) -> Result[Order, SettlementError]:
        """Cancel locally, then cancel the voided intents at the provider."""
        voided: list[str] = []

        async def cancel(session: AsyncSession) -> Result[Order, SettlementError]:
            voided.extend(await pending_refs(session, order_id))
            return await self.orders.cancel(session, order_id, reason)

        match await self._write("cancel_order", cancel):
            case Error(err):
                return Error(err)
            case Ok(order):
                pass

        if voided:
            await self.intents.void_intents(voided)
        return Ok(order)

    async def update_status(
        self, order_id: str, target: OrderStatus
    ) -> Result[Order, SettlementError]:
        """Manual transition. CANCELLED goes through cancel_order's compensation."""
        if target is OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, reason="status_update")

        async def move(session: AsyncSession) -> Result[Order, SettlementError]:
            match await self.orders.machine.transition(
                session, order_id, target, reason="status_update"
            ):
                case Error(err):
                    return Error(err)
                case Ok(_):
                    pass
            order = await self.orders.get(session, order_id)
            assert order is not None
            return Ok(order)

        return await self._write("update_status", move)

    async def health(self) -> Result[dict[str, str], SettlementError]:
        async def ping(session: AsyncSession) -> Result[dict[str, str], SettlementError]:
            await session.execute(text("SELECT 1"))
            return Ok({"database": "ok"})

        return await self._read("health", ping)

    def provider_circuit(self) -> BreakerStatus:
        return self.resilience.status(CREATE_INTENT)


__all__ = ("SettlementService",)
