"""
Checkout types — request, priced lines, receipt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from settlement._types import Cents
from settlement.orders import Customization, Order, OrderItem

MAX_LINE_QUANTITY = 99


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Address:
    full_name: str
    line1: str
    city: str
    postal_code: str
    country: str
    line2: str | None = None
    region: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fullName": self.full_name,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "region": self.region,
            "postalCode": self.postal_code,
            "country": self.country,
            "phone": self.phone,
        }


@dataclass(frozen=True, slots=True)
class CheckoutLine:
    """Client-supplied line, used only when the server-side cart is empty."""

    product_id: str
    quantity: int
    size: str | None = None
    customization: Customization | None = None


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    idempotency_key: str
    shipping_address: Address
    email: str | None = None
    discount_code: str | None = None
    cart_id: str | None = None
    lines: tuple[CheckoutLine, ...] = ()


# ═══════════════════════════════════════════════════════════════════════════════
# Priced Lines
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PricedLine:
    """A line with its price snapshot. Becomes an OrderItem unchanged."""

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

    def to_item(self) -> OrderItem:
        return OrderItem(
            product_id=self.product_id,
            sku=self.sku,
            name=self.name,
            size=self.size,
            quantity=self.quantity,
            unit_price=self.unit_price,
            customization=self.customization,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Receipt
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutReceipt:
    """
    Checkout result.

    Note: replayed=True when the idempotency key matched an existing order.
    """

    order_id: str
    subtotal: Cents
    discount: Cents
    tax: Cents
    shipping: Cents
    total: Cents
    currency: str
    replayed: bool = False
    items: tuple[OrderItem, ...] = field(default=(), compare=False)

    @classmethod
    def from_order(cls, order: Order, replayed: bool) -> CheckoutReceipt:
        return cls(
            order_id=order.id,
            subtotal=order.subtotal,
            discount=order.discount,
            tax=order.tax,
            shipping=order.shipping,
            total=order.total,
            currency=order.currency,
            replayed=replayed,
            items=order.items,
        )


__all__ = (
    "MAX_LINE_QUANTITY",
    "Address",
    "CheckoutLine",
    "CheckoutRequest",
    "PricedLine",
    "CheckoutReceipt",
)
