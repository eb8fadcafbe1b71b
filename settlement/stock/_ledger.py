"""
Stock ledger — conditional decrements, no locks.

Every operation runs on the caller's session so it joins the caller's
transaction: a decrement and the order that causes it commit or roll back
together.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.observability import get_logger
from settlement.store import SizeVariantTable

log = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class VariantKey:
    """A stock unit: (product, size label)."""

    product_id: str
    size: str


@dataclass(frozen=True, slots=True)
class Shortfall:
    """Requested more than available. available is 0 for unknown variants."""

    product_id: str
    size: str
    requested: int
    available: int

    def to_dict(self) -> dict[str, object]:
        return {
            "productId": self.product_id,
            "size": self.size,
            "requested": self.requested,
            "available": self.available,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class StockLedger:
    """
    Per-variant stock counts.

    Note: check_availability() is advisory; only decrement() is authoritative
    under concurrency.
    """

    async def available(self, session: AsyncSession, key: VariantKey) -> int:
        stock = await session.scalar(
            select(SizeVariantTable.stock).where(
                SizeVariantTable.product_id == key.product_id,
                SizeVariantTable.size == key.size,
            )
        )
        return stock or 0

    async def check_availability(
        self, session: AsyncSession, key: VariantKey, qty: int
    ) -> Shortfall | None:
        available = await self.available(session, key)
        if qty <= available:
            return None
        return Shortfall(key.product_id, key.size, qty, available)

    async def decrement(self, session: AsyncSession, key: VariantKey, qty: int) -> bool:
        """Take qty units iff at least qty remain. Single conditional UPDATE."""
        if qty <= 0:
            return True

        result = await session.execute(
            update(SizeVariantTable)
            .where(
                SizeVariantTable.product_id == key.product_id,
                SizeVariantTable.size == key.size,
                SizeVariantTable.stock >= qty,
            )
            .values(stock=SizeVariantTable.stock - qty)
            .execution_options(synchronize_session=False)
        )
        taken = result.rowcount > 0  # type: ignore[attr-defined]
        if not taken:
            log.info("stock_decrement_refused", product_id=key.product_id, size=key.size, qty=qty)
        return taken

    async def release(self, session: AsyncSession, key: VariantKey, qty: int) -> None:
        """Return qty units. Unknown variants are ignored (deleted from catalog)."""
        if qty <= 0:
            return

        await session.execute(
            update(SizeVariantTable)
            .where(
                SizeVariantTable.product_id == key.product_id,
                SizeVariantTable.size == key.size,
            )
            .values(stock=SizeVariantTable.stock + qty)
            .execution_options(synchronize_session=False)
        )


__all__ = ("VariantKey", "Shortfall", "StockLedger")
