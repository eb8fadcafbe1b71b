"""
Order event log — append-only, written on the caller's session.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import utcnow
from settlement.orders._types import OrderEvent, OrderEventKind
from settlement.store import OrderEventTable


def append_event(
    session: AsyncSession,
    order_id: str,
    kind: OrderEventKind,
    message: str,
    details: Mapping[str, Any] | None = None,
) -> None:
    session.add(
        OrderEventTable(
            order_id=order_id,
            kind=kind.value,
            message=message,
            details=dict(details or {}),
            created_at=utcnow(),
        )
    )


async def list_events(
    session: AsyncSession,
    order_id: str,
    kind: OrderEventKind | None = None,
) -> list[OrderEvent]:
    stmt = select(OrderEventTable).where(OrderEventTable.order_id == order_id)
    if kind is not None:
        stmt = stmt.where(OrderEventTable.kind == kind.value)
    rows = await session.scalars(stmt.order_by(OrderEventTable.id))
    return [OrderEvent.from_row(r) for r in rows]


__all__ = ("append_event", "list_events")
