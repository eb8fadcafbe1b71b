"""Test helpers: seeding, fake time, request builders."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from kungfu import Error, Ok, Result
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.checkout import Address, CheckoutLine, CheckoutRequest
from settlement.orders import OrderEvent, OrderEventKind, list_events
from settlement.stock import StockLedger, VariantKey
from settlement.store import (
    CartLineTable,
    CartTable,
    DiscountCodeTable,
    PaymentRecordTable,
    ProcessedWebhookEventTable,
    ProductTable,
    SizeVariantTable,
)

type SessionFactory = async_sessionmaker[AsyncSession]


# ═══════════════════════════════════════════════════════════════════════════════
# Seeding
# ═══════════════════════════════════════════════════════════════════════════════


class Seeder:
    """Inserts and reads back rows, each call in its own session."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def product(
        self,
        product_id: str = "tee",
        price: int = 2500,
        sizes: dict[str, int] | None = None,
        name: str | None = None,
    ) -> None:
        async with self.session_factory() as session, session.begin():
            session.add(
                ProductTable(
                    id=product_id,
                    sku=f"SKU-{product_id.upper()}",
                    name=name or product_id.title(),
                    price_cents=price,
                    currency="USD",
                )
            )
            await session.flush()
            for size, stock in (sizes or {}).items():
                session.add(SizeVariantTable(product_id=product_id, size=size, stock=stock))

    async def discount(
        self,
        code: str,
        *,
        value_cents: int | None = None,
        percent: int | None = None,
        min_subtotal_cents: int | None = None,
        usage_limit: int | None = None,
        times_used: int = 0,
        active: bool = True,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> None:
        async with self.session_factory() as session, session.begin():
            session.add(
                DiscountCodeTable(
                    code=code.upper(),
                    kind="PERCENT" if percent is not None else "FIXED",
                    value_cents=value_cents,
                    percent=percent,
                    min_subtotal_cents=min_subtotal_cents,
                    usage_limit=usage_limit,
                    times_used=times_used,
                    active=active,
                    starts_at=starts_at,
                    ends_at=ends_at,
                )
            )

    async def cart(self, cart_id: str, lines: list[tuple[str, str | None, int, int]]) -> None:
        """lines: (product_id, size, quantity, unit_price_cents)."""
        async with self.session_factory() as session, session.begin():
            session.add(CartTable(id=cart_id))
            await session.flush()
            for product_id, size, quantity, price in lines:
                session.add(
                    CartLineTable(
                        cart_id=cart_id,
                        product_id=product_id,
                        size=size,
                        quantity=quantity,
                        unit_price_cents=price,
                    )
                )

    # ───────────────────────────────────────────────────────────────────────────
    # Reads
    # ───────────────────────────────────────────────────────────────────────────

    async def stock(self, product_id: str, size: str) -> int:
        async with self.session_factory() as session:
            return await StockLedger().available(session, VariantKey(product_id, size))

    async def times_used(self, code: str) -> int:
        async with self.session_factory() as session:
            used = await session.scalar(
                select(DiscountCodeTable.times_used).where(DiscountCodeTable.code == code.upper())
            )
        assert used is not None
        return used

    async def cart_lines(self, cart_id: str) -> int:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CartLineTable).where(CartLineTable.cart_id == cart_id)
            )
            return len(rows.all())

    async def events(
        self, order_id: str, kind: OrderEventKind | None = None
    ) -> list[OrderEvent]:
        async with self.session_factory() as session:
            return await list_events(session, order_id, kind)

    async def payment_records(self, order_id: str) -> list[PaymentRecordTable]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(PaymentRecordTable)
                .where(PaymentRecordTable.order_id == order_id)
                .order_by(PaymentRecordTable.id)
            )
            return list(rows.all())

    async def ledger_entries(self) -> int:
        async with self.session_factory() as session:
            rows = await session.scalars(select(ProcessedWebhookEventTable))
            return len(rows.all())


# ═══════════════════════════════════════════════════════════════════════════════
# Fake time
# ═══════════════════════════════════════════════════════════════════════════════


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


ADDRESS = Address(
    full_name="Ada Lovelace",
    line1="12 St James's Square",
    city="London",
    postal_code="SW1Y 4JH",
    country="GB",
)


def checkout_request(
    key: str = "chk-0001",
    *lines: CheckoutLine,
    discount_code: str | None = None,
    cart_id: str | None = None,
    email: str | None = "ada@example.com",
) -> CheckoutRequest:
    return CheckoutRequest(
        idempotency_key=key,
        shipping_address=ADDRESS,
        email=email,
        discount_code=discount_code,
        cart_id=cart_id,
        lines=tuple(lines),
    )


def line(product_id: str = "tee", quantity: int = 1, size: str | None = "M") -> CheckoutLine:
    return CheckoutLine(product_id=product_id, quantity=quantity, size=size)


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


def ok[T](result: Result[T, Any]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            pytest.fail(f"expected Ok, got Error({e!r})")


def err[E](result: Result[Any, E]) -> E:
    match result:
        case Error(e):
            return e
        case Ok(value):
            pytest.fail(f"expected Error, got Ok({value!r})")
