"""
Order state machine — the only writer of orders.status.

    PENDING ──► AWAITING_PAYMENT ──► PAID
       │              │
       │              ├──► FAILED
       ▼              ▼
    CANCELLED ◄───────┘

Every accepted transition is a compare-and-set on the current status plus a
STATUS_CHANGED event, both on the caller's session, so they commit together.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kungfu import Result, Ok, Error
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement._types import utcnow
from settlement.errors import SettlementError, SettlementErrors
from settlement.observability import get_logger
from settlement.orders._events import append_event
from settlement.orders._types import OrderEventKind, OrderStatus
from settlement.store import OrderTable

log = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Transition Table
# ═══════════════════════════════════════════════════════════════════════════════

S = OrderStatus

TRANSITIONS: Mapping[OrderStatus, tuple[OrderStatus, ...]] = {
    S.PENDING: (S.AWAITING_PAYMENT, S.CANCELLED),
    S.AWAITING_PAYMENT: (S.PAID, S.FAILED, S.CANCELLED),
    S.PAID: (),
    S.FAILED: (),
    S.CANCELLED: (),
    # Owned by the shipment/refund subsystems; nothing leaves them here.
    S.FULFILLING: (),
    S.SHIPPED: (),
    S.DELIVERED: (),
    S.REFUNDED: (),
}


def allowed_targets(source: OrderStatus) -> tuple[OrderStatus, ...]:
    return TRANSITIONS[source]


def can_transition(source: OrderStatus, target: OrderStatus) -> bool:
    """Self-transitions are accepted as no-ops."""
    return source == target or target in TRANSITIONS[source]


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[status]


def _rejection(source: OrderStatus, target: OrderStatus) -> SettlementError:
    return SettlementErrors.invalid_transition(
        source.value,
        target.value,
        [s.value for s in allowed_targets(source)],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Machine
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of an accepted transition. changed=False for no-op self-transitions."""

    order_id: str
    source: OrderStatus
    target: OrderStatus
    changed: bool
    paid_at: datetime | None


class OrderStateMachine:
    async def transition(
        self,
        session: AsyncSession,
        order_id: str,
        target: OrderStatus,
        *,
        reason: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> Result[Transition, SettlementError]:
        row = await session.get(OrderTable, order_id, populate_existing=True)
        if row is None:
            return Error(SettlementErrors.order_not_found(order_id))

        source = OrderStatus(row.status)
        if source == target:
            return Ok(Transition(order_id, source, target, False, row.paid_at))
        if not can_transition(source, target):
            log.info(
                "order_transition_rejected",
                order_id=order_id,
                source=source.value,
                target=target.value,
            )
            return Error(_rejection(source, target))

        now = utcnow()
        values: dict[str, Any] = {"status": target.value, "updated_at": now}
        if target is S.PAID and row.paid_at is None:
            values["paid_at"] = now

        result = await session.execute(
            update(OrderTable)
            .where(OrderTable.id == order_id, OrderTable.status == source.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(row)

        if result.rowcount == 0:  # type: ignore[attr-defined]
            # Another writer moved the order first.
            current = OrderStatus(row.status)
            if current == target:
                return Ok(Transition(order_id, current, target, False, row.paid_at))
            return Error(_rejection(current, target))

        append_event(
            session,
            order_id,
            OrderEventKind.STATUS_CHANGED,
            f"Status changed from {source.value} to {target.value}",
            {
                "from": source.value,
                "to": target.value,
                **({"reason": reason} if reason else {}),
                **(details or {}),
            },
        )
        log.info(
            "order_transitioned",
            order_id=order_id,
            source=source.value,
            target=target.value,
            reason=reason,
        )
        return Ok(Transition(order_id, source, target, True, row.paid_at))


__all__ = (
    "TRANSITIONS",
    "allowed_targets",
    "can_transition",
    "is_terminal",
    "Transition",
    "OrderStateMachine",
)
