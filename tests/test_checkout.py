"""Tests for the checkout orchestrator."""

from __future__ import annotations

from kungfu import Result
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import Cents
from settlement.checkout import (
    Address,
    CheckoutLine,
    CheckoutOrchestrator,
    FlatRates,
    RateQuery,
    Rates,
    RuleBasedRates,
    total_of,
)
from settlement.discount import AppliedDiscount, DiscountEvaluator, DiscountRejected
from settlement.errors import ErrorKind
from settlement.orders import Customization, OrderEventKind, OrderRepository, OrderStatus
from settlement.store import DiscountCodeTable
from tests.helpers import ADDRESS, Seeder, SessionFactory, checkout_request, err, line, ok


class UsedUpAfterEvaluate(DiscountEvaluator):
    """A concurrent checkout takes the last use between evaluation and the write."""

    async def evaluate(
        self, session: AsyncSession, code: str, subtotal: Cents
    ) -> Result[AppliedDiscount, DiscountRejected]:
        result = await super().evaluate(session, code, subtotal)
        await session.execute(
            update(DiscountCodeTable)
            .where(DiscountCodeTable.code == code.upper())
            .values(times_used=DiscountCodeTable.usage_limit)
            .execution_options(synchronize_session=False)
        )
        return result


class TestIdempotency:
    """Same key, same order."""

    async def test_replay_returns_same_order_and_decrements_once(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 10})
        request = checkout_request("chk-idem", line(quantity=2))

        first = ok(await orchestrator.checkout(request))
        second = ok(await orchestrator.checkout(request))

        assert second.order_id == first.order_id
        assert first.replayed is False
        assert second.replayed is True
        assert await seed.stock("tee", "M") == 8

    async def test_replay_skips_revalidation(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", sizes={"M": 2})
        ok(await orchestrator.checkout(checkout_request("chk-a", line(quantity=2))))

        # Stock is now 0; the replay still succeeds.
        replay = await orchestrator.checkout(checkout_request("chk-a", line(quantity=2)))

        assert ok(replay).replayed is True


class TestLines:
    """Resolving cart and fallback lines."""

    async def test_empty_cart(self, orchestrator: CheckoutOrchestrator) -> None:
        result = await orchestrator.checkout(checkout_request("chk-empty"))

        assert err(result).kind is ErrorKind.EMPTY_CART

    async def test_unknown_fallback_lines_are_skipped(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", sizes={"M": 1})

        result = await orchestrator.checkout(
            checkout_request("chk-skip", line("ghost"), line("tee", size="XXL"))
        )

        assert err(result).kind is ErrorKind.EMPTY_CART

    async def test_fallback_priced_from_catalog(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=1999, sizes={"M": 5})

        receipt = ok(await orchestrator.checkout(checkout_request("chk-fb", line(quantity=3))))

        assert receipt.subtotal == 3 * 1999
        assert receipt.items[0].unit_price == 1999

    async def test_persisted_cart_wins_over_fallback(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})
        await seed.product("cap", price=1500)
        # Cart price snapshot differs from the live catalog price.
        await seed.cart("cart-1", [("cap", None, 2, 1200)])

        receipt = ok(
            await orchestrator.checkout(
                checkout_request("chk-cart", line("tee", quantity=1), cart_id="cart-1")
            )
        )

        assert receipt.subtotal == 2400
        assert [i.product_id for i in receipt.items] == ["cap"]
        assert await seed.stock("tee", "M") == 5

    async def test_lost_cart_is_rebuilt_from_fallback(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})
        await seed.product("cap", price=1500)

        ok(
            await orchestrator.checkout(
                checkout_request(
                    "chk-lost",
                    line("tee", quantity=2),
                    line("cap", quantity=1, size=None),
                    cart_id="cart-lost",
                )
            )
        )

        assert await seed.cart_lines("cart-lost") == 2

    async def test_rebuilt_cart_survives_stock_conflict(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 1})

        result = await orchestrator.checkout(
            checkout_request("chk-lost-2", line("tee", quantity=3), cart_id="cart-lost-2")
        )

        assert err(result).kind is ErrorKind.STOCK_CONFLICT
        assert await seed.cart_lines("cart-lost-2") == 1

    async def test_fallback_quantity_is_not_capped(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=100, sizes={"M": 120})

        receipt = ok(await orchestrator.checkout(checkout_request("chk-bulk", line(quantity=110))))

        assert receipt.items[0].quantity == 110
        assert await seed.stock("tee", "M") == 10

    async def test_unsized_lines_are_not_stock_tracked(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("sticker", price=300)

        receipt = ok(
            await orchestrator.checkout(checkout_request("chk-st", line("sticker", 40, size=None)))
        )

        assert receipt.subtotal == 12_000

    async def test_customization_is_snapshotted(
        self, db: SessionFactory, seed: Seeder, orchestrator: CheckoutOrchestrator,
        orders: OrderRepository,
    ) -> None:
        await seed.product("jersey", price=8000, sizes={"L": 3})
        custom = CheckoutLine("jersey", 1, "L", Customization(name="LOVELACE", number="10"))

        receipt = ok(await orchestrator.checkout(checkout_request("chk-cus", custom)))

        async with db() as session:
            order = await orders.get(session, receipt.order_id)
        assert order is not None
        assert order.items[0].customization == Customization(name="LOVELACE", number="10")


class TestStock:
    """Shortfalls."""

    async def test_all_shortfalls_reported(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", sizes={"M": 1, "L": 0})
        await seed.product("hoodie", sizes={"S": 5})

        result = await orchestrator.checkout(
            checkout_request(
                "chk-short",
                line("tee", 2, "M"),
                line("tee", 1, "L"),
                line("hoodie", 1, "S"),
            )
        )

        error = err(result)
        assert error.kind is ErrorKind.STOCK_CONFLICT
        assert error.details["stockErrors"] == [
            {"productId": "tee", "size": "M", "requested": 2, "available": 1},
            {"productId": "tee", "size": "L", "requested": 1, "available": 0},
        ]
        assert await seed.stock("hoodie", "S") == 5

    async def test_duplicate_lines_are_summed(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", sizes={"M": 3})

        result = await orchestrator.checkout(
            checkout_request("chk-dup", line(quantity=2), line(quantity=2))
        )

        assert err(result).details["stockErrors"][0]["requested"] == 4


class TestDiscounts:
    """Discounts at checkout."""

    async def test_fixed_discount_applied_and_consumed(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})
        await seed.discount("SAVE5", value_cents=500)

        receipt = ok(
            await orchestrator.checkout(
                checkout_request("chk-d", line(), discount_code="save5")
            )
        )

        assert receipt.discount == 500
        assert receipt.total == 2000
        assert await seed.times_used("SAVE5") == 1
        events = await seed.events(receipt.order_id, OrderEventKind.DISCOUNT_APPLIED)
        assert events[0].details["code"] == "SAVE5"

    async def test_fixed_discount_capped_at_subtotal(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("sticker", price=300)
        await seed.discount("SAVE5", value_cents=500)

        receipt = ok(
            await orchestrator.checkout(
                checkout_request("chk-cap", line("sticker", size=None), discount_code="SAVE5")
            )
        )

        assert receipt.discount == 300
        assert receipt.total == 0

    async def test_exhaustion(self, seed: Seeder, orchestrator: CheckoutOrchestrator) -> None:
        await seed.product("tee", sizes={"M": 5})
        await seed.discount("ONCE", percent=10, usage_limit=1)

        first = await orchestrator.checkout(checkout_request("chk-1", line(), discount_code="ONCE"))
        second = await orchestrator.checkout(checkout_request("chk-2", line(), discount_code="ONCE"))

        ok(first)
        assert err(second).kind is ErrorKind.DISCOUNT_EXHAUSTED
        assert await seed.times_used("ONCE") == 1
        assert await seed.stock("tee", "M") == 4

    async def test_usage_taken_after_evaluation_rolls_back_checkout(
        self, db: SessionFactory, seed: Seeder, orders: OrderRepository
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})
        await seed.discount("ONCE", value_cents=500, usage_limit=1)
        orchestrator = CheckoutOrchestrator(
            db, rates=FlatRates(), orders=orders, discounts=UsedUpAfterEvaluate()
        )

        result = await orchestrator.checkout(
            checkout_request("chk-late-use", line(quantity=2), discount_code="ONCE")
        )

        assert err(result).kind is ErrorKind.DISCOUNT_EXHAUSTED
        assert await seed.stock("tee", "M") == 5
        assert await seed.times_used("ONCE") == 0
        async with db() as session:
            assert await orders.find_by_idempotency_key(session, "chk-late-use") is None

    async def test_rejection_kind_propagates(
        self, seed: Seeder, orchestrator: CheckoutOrchestrator
    ) -> None:
        await seed.product("tee", price=1000, sizes={"M": 5})
        await seed.discount("BIG", percent=10, min_subtotal_cents=5000)

        unknown = await orchestrator.checkout(checkout_request("chk-u", line(), discount_code="NOPE"))
        minimum = await orchestrator.checkout(checkout_request("chk-m", line(), discount_code="BIG"))

        assert err(unknown).kind is ErrorKind.INVALID_DISCOUNT
        assert err(minimum).kind is ErrorKind.DISCOUNT_MIN_SUBTOTAL
        assert await seed.stock("tee", "M") == 5


class TestTotals:
    """Order creation and arithmetic."""

    async def test_order_is_pending_with_created_event(
        self, db: SessionFactory, seed: Seeder, orchestrator: CheckoutOrchestrator,
        orders: OrderRepository,
    ) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})

        receipt = ok(await orchestrator.checkout(checkout_request("chk-t", line(quantity=2))))

        async with db() as session:
            order = await orders.get(session, receipt.order_id)
        assert order is not None
        assert order.status is OrderStatus.PENDING
        assert order.email == "ada@example.com"
        assert order.shipping_address["country"] == "GB"
        assert order.paid_at is None
        assert [e.kind for e in await seed.events(order.id)] == [OrderEventKind.ORDER_CREATED]

    async def test_rates_feed_total(self, db: SessionFactory, seed: Seeder) -> None:
        await seed.product("tee", price=2500, sizes={"M": 5})
        await seed.discount("SAVE5", value_cents=500)
        orchestrator = CheckoutOrchestrator(db, rates=FlatRates(tax=160, shipping=599))

        receipt = ok(
            await orchestrator.checkout(checkout_request("chk-r", line(), discount_code="SAVE5"))
        )

        assert (receipt.subtotal, receipt.discount, receipt.tax, receipt.shipping) == (
            2500,
            500,
            160,
            599,
        )
        assert receipt.total == 2500 - 500 + 160 + 599


class TestRates:
    """Rate policies."""

    def test_inclusive_tax_is_not_added(self) -> None:
        rates = Rates(tax=200, shipping=100, tax_inclusive=True)

        assert total_of(1200, 0, rates) == 1300

    def test_rule_based_us_california(self) -> None:
        address = Address("A", "1 Main", "LA", "90001", "US", region="CA")
        query = RateQuery(subtotal=2000, discount=0, item_count=2, destination=address, currency="USD")

        rates = RuleBasedRates().quote(query)

        assert rates.tax == 145  # 7.25% of 2000
        assert rates.shipping == 599 + 2 * 100

    def test_tax_on_discounted_subtotal(self) -> None:
        address = Address("A", "1 Main", "LA", "90001", "US", region="CA")
        query = RateQuery(subtotal=2000, discount=1000, item_count=1, destination=address, currency="USD")

        assert RuleBasedRates().quote(query).tax == 73  # 7.25% of 1000, rounded

    def test_free_shipping_threshold(self) -> None:
        query = RateQuery(subtotal=7500, discount=0, item_count=3, destination=ADDRESS, currency="USD")

        assert RuleBasedRates().quote(query).shipping == 0

    def test_inclusive_currency_extracts_tax(self) -> None:
        query = RateQuery(subtotal=1200, discount=0, item_count=1, destination=ADDRESS, currency="GBP")

        rates = RuleBasedRates(inclusive_currencies=frozenset({"GBP"})).quote(query)

        assert rates.tax_inclusive is True
        assert rates.tax == 200  # 20% VAT inside 1200
