"""
Cart repository — resolve the lines a checkout will price.

The persisted cart wins; client-supplied lines are a fallback for a lost
server-side cart and are priced from the catalog, never from the client.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import utcnow
from settlement.checkout._types import CheckoutLine, PricedLine
from settlement.observability import get_logger
from settlement.orders import Customization
from settlement.store import CartLineTable, CartTable, ProductTable, SizeVariantTable

log = get_logger(__name__)


class CartRepository:
    async def load(self, session: AsyncSession, cart_id: str) -> list[PricedLine]:
        """Persisted lines with their add-time price snapshots."""
        rows = await session.execute(
            select(CartLineTable, ProductTable)
            .join(ProductTable, ProductTable.id == CartLineTable.product_id)
            .where(CartLineTable.cart_id == cart_id)
            .order_by(CartLineTable.id)
        )
        return [
            PricedLine(
                product_id=line.product_id,
                sku=product.sku,
                name=product.name,
                size=line.size,
                quantity=line.quantity,
                unit_price=line.unit_price_cents,
                customization=Customization.from_dict(line.customization),
            )
            for line, product in rows.tuples()
            if line.quantity > 0
        ]

    async def price_fallback(
        self, session: AsyncSession, lines: Sequence[CheckoutLine]
    ) -> list[PricedLine]:
        """
        Price client lines from the catalog.

        Unknown products and unknown sizes are skipped. Quantities are taken
        as given: the request schema bounds them, and stock shortfalls are
        reported by the stock check, not hidden here.
        """
        if not lines:
            return []

        product_ids = {line.product_id for line in lines}
        products = {
            p.id: p
            for p in await session.scalars(
                select(ProductTable).where(ProductTable.id.in_(product_ids))
            )
        }
        variants = {
            (v.product_id, v.size)
            for v in await session.scalars(
                select(SizeVariantTable).where(SizeVariantTable.product_id.in_(product_ids))
            )
        }

        priced: list[PricedLine] = []
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                log.info("fallback_line_skipped", product_id=line.product_id, why="unknown_product")
                continue
            if line.size is not None and (line.product_id, line.size) not in variants:
                log.info(
                    "fallback_line_skipped",
                    product_id=line.product_id,
                    size=line.size,
                    why="unknown_size",
                )
                continue
            if line.quantity <= 0:
                continue
            priced.append(
                PricedLine(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name,
                    size=line.size,
                    quantity=line.quantity,
                    unit_price=product.price_cents,
                    customization=line.customization,
                )
            )
        return priced

    async def replace(
        self, session: AsyncSession, cart_id: str, lines: Sequence[PricedLine]
    ) -> None:
        """Replace the cart's lines wholesale."""
        cart = await session.get(CartTable, cart_id)
        if cart is None:
            session.add(CartTable(id=cart_id, updated_at=utcnow()))
        else:
            cart.updated_at = utcnow()
        await session.execute(delete(CartLineTable).where(CartLineTable.cart_id == cart_id))
        session.add_all(
            CartLineTable(
                cart_id=cart_id,
                product_id=line.product_id,
                size=line.size,
                quantity=line.quantity,
                unit_price_cents=line.unit_price,
                customization=line.customization.to_dict() if line.customization else None,
            )
            for line in lines
        )

    async def clear(self, session: AsyncSession, cart_id: str) -> None:
        await session.execute(delete(CartLineTable).where(CartLineTable.cart_id == cart_id))


__all__ = ("CartRepository",)
