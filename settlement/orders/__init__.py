"""
Orders — repository, event log and the order state machine.

    from settlement import orders as O

    machine = O.OrderStateMachine()
    async with session.begin():
        match await machine.transition(session, order_id, O.OrderStatus.PAID):
            case Ok(t):
                t.paid_at
            case Error(e):
                e.message   # "Invalid transition from PENDING to PAID; allowed: [...]"

    repo = O.OrderRepository()
    order = await repo.find_by_idempotency_key(session, key)
"""

from settlement.orders._types import (
    OrderStatus,
    OrderEventKind,
    Customization,
    OrderItem,
    Order,
    OrderDraft,
    OrderEvent,
)
from settlement.orders._events import append_event, list_events
from settlement.orders._machine import (
    TRANSITIONS,
    allowed_targets,
    can_transition,
    is_terminal,
    Transition,
    OrderStateMachine,
)
from settlement.orders._repository import OrderRepository

__all__ = (
    # Types
    "OrderStatus",
    "OrderEventKind",
    "Customization",
    "OrderItem",
    "Order",
    "OrderDraft",
    "OrderEvent",
    # Events
    "append_event",
    "list_events",
    # State machine
    "TRANSITIONS",
    "allowed_targets",
    "can_transition",
    "is_terminal",
    "Transition",
    "OrderStateMachine",
    # Repository
    "OrderRepository",
)
