"""
Order types — status, events, immutable snapshots.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from settlement._types import Cents
from settlement.store import OrderEventTable, OrderItemTable, OrderTable


# ═══════════════════════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    """
    Order lifecycle.

    FULFILLING/SHIPPED/DELIVERED/REFUNDED belong to the shipment and refund
    subsystems. They are known here only so that requests naming them can be
    rejected as transitions rather than as unparseable input.
    """

    PENDING = "PENDING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    REFUNDED = "REFUNDED"


class OrderEventKind(Enum):
    ORDER_CREATED = "ORDER_CREATED"
    DISCOUNT_APPLIED = "DISCOUNT_APPLIED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    STOCK_RESTORED = "STOCK_RESTORED"
    ORDER_CANCELLED = "ORDER_CANCELLED"


# ═══════════════════════════════════════════════════════════════════════════════
# Customization — explicit optional variant
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Customization:
    """
    Printed name/number on a line item.

    from_dict() refuses unknown keys: an unrecognized shape is an error, not
    something silently dropped from the order.
    """

    name: str | None = None
    number: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> Customization | None:
        if not raw:
            return None
        unknown = set(raw) - {"name", "number"}
        if unknown:
            raise ValueError(f"Unknown customization fields: {sorted(unknown)}")
        name = raw.get("name")
        number = raw.get("number")
        if name is None and number is None:
            return None
        return cls(
            name=str(name) if name is not None else None,
            number=str(number) if number is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "number": self.number}


# ═══════════════════════════════════════════════════════════════════════════════
# Snapshots
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class OrderItem:
    product_id: str
    sku: str
    name: str
    size: str | None
    quantity: int
    unit_price: Cents
    customization: Customization | None = None

    @property
    def line_total(self) -> Cents:
        return self.unit_price * self.quantity

    @classmethod
    def from_row(cls, row: OrderItemTable) -> OrderItem:
        return cls(
            product_id=row.product_id,
            sku=row.sku,
            name=row.name,
            size=row.size,
            quantity=row.quantity,
            unit_price=row.unit_price_cents,
            customization=Customization.from_dict(row.customization),
        )


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    idempotency_key: str
    status: OrderStatus
    currency: str
    subtotal: Cents
    discount: Cents
    tax: Cents
    shipping: Cents
    total: Cents
    tax_inclusive: bool
    email: str | None
    shipping_address: Mapping[str, Any]
    discount_code_id: int | None
    cart_id: str | None
    created_at: datetime
    paid_at: datetime | None
    items: tuple[OrderItem, ...] = ()

    @classmethod
    def from_row(cls, row: OrderTable) -> Order:
        return cls(
            id=row.id,
            idempotency_key=row.idempotency_key,
            status=OrderStatus(row.status),
            currency=row.currency,
            subtotal=row.subtotal_cents,
            discount=row.discount_cents,
            tax=row.tax_cents,
            shipping=row.shipping_cents,
            total=row.total_cents,
            tax_inclusive=row.tax_inclusive,
            email=row.email,
            shipping_address=dict(row.shipping_address),
            discount_code_id=row.discount_code_id,
            cart_id=row.cart_id,
            created_at=row.created_at,
            paid_at=row.paid_at,
            items=tuple(OrderItem.from_row(i) for i in row.items),
        )


@dataclass(frozen=True, slots=True)
class OrderDraft:
    """Everything checkout computed; persisted as one order row plus items."""

    id: str
    idempotency_key: str
    currency: str
    subtotal: Cents
    discount: Cents
    tax: Cents
    shipping: Cents
    total: Cents
    tax_inclusive: bool
    email: str | None
    shipping_address: Mapping[str, Any]
    items: tuple[OrderItem, ...]
    discount_code_id: int | None = None
    cart_id: str | None = None


@dataclass(frozen=True, slots=True)
class OrderEvent:
    order_id: str
    kind: OrderEventKind
    message: str
    created_at: datetime
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: OrderEventTable) -> OrderEvent:
        return cls(
            order_id=row.order_id,
            kind=OrderEventKind(row.kind),
            message=row.message,
            created_at=row.created_at,
            details=dict(row.details or {}),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "OrderStatus",
    "OrderEventKind",
    "Customization",
    "OrderItem",
    "Order",
    "OrderDraft",
    "OrderEvent",
)
