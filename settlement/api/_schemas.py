"""
HTTP schemas — camelCase on the wire, domain types inside.

Request models expose ``to_domain()``; response models ``from_domain()``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from settlement.checkout import (
    MAX_LINE_QUANTITY,
    Address,
    CheckoutLine,
    CheckoutReceipt,
    CheckoutRequest,
)
from settlement.discount import DiscountCheck, DiscountCode, DiscountDraft, Fixed, Percent
from settlement.orders import Customization, Order, OrderItem
from settlement.payments import PaymentIntent
from settlement.webhooks import WebhookReceipt


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout
# ═══════════════════════════════════════════════════════════════════════════════


class AddressIn(Schema):
    full_name: str = Field(min_length=1)
    line1: str = Field(min_length=1)
    line2: str | None = None
    city: str = Field(min_length=1)
    region: str | None = None
    postal_code: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    phone: str | None = None

    def to_domain(self) -> Address:
        return Address(
            full_name=self.full_name,
            line1=self.line1,
            line2=self.line2,
            city=self.city,
            region=self.region,
            postal_code=self.postal_code,
            country=self.country.upper(),
            phone=self.phone,
        )


class CustomizationIn(Schema):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=40)
    number: str | None = Field(default=None, max_length=3)

    def to_domain(self) -> Customization | None:
        return Customization.from_dict(self.model_dump(exclude_none=True))


class CheckoutLineIn(Schema):
    product_id: str = Field(min_length=1)
    quantity: int = Field(ge=1, le=MAX_LINE_QUANTITY)
    size: str | None = None
    customization: CustomizationIn | None = None

    def to_domain(self) -> CheckoutLine:
        return CheckoutLine(
            product_id=self.product_id,
            quantity=self.quantity,
            size=self.size,
            customization=self.customization.to_domain() if self.customization else None,
        )


class CheckoutIn(Schema):
    idempotency_key: str = Field(min_length=8, max_length=100)
    shipping_address: AddressIn
    email: str | None = None
    discount_code: str | None = None
    lines: list[CheckoutLineIn] = Field(default_factory=list)

    def to_domain(self, cart_id: str | None) -> CheckoutRequest:
        return CheckoutRequest(
            idempotency_key=self.idempotency_key,
            shipping_address=self.shipping_address.to_domain(),
            email=self.email,
            discount_code=self.discount_code or None,
            cart_id=cart_id,
            lines=tuple(line.to_domain() for line in self.lines),
        )


class CheckoutOut(Schema):
    order_id: str
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    currency: str
    replayed: bool

    @classmethod
    def from_domain(cls, receipt: CheckoutReceipt) -> CheckoutOut:
        return cls(
            order_id=receipt.order_id,
            subtotal_cents=receipt.subtotal,
            discount_cents=receipt.discount,
            tax_cents=receipt.tax,
            shipping_cents=receipt.shipping,
            total_cents=receipt.total,
            currency=receipt.currency,
            replayed=receipt.replayed,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════


class DiscountCheckOut(Schema):
    valid: bool
    reason: str | None = None
    kind: str | None = None
    value_cents: int | None = None
    percent: int | None = None
    min_subtotal_cents: int | None = None
    amount_cents: int | None = None

    @classmethod
    def from_domain(cls, check: DiscountCheck) -> DiscountCheckOut:
        out = cls(
            valid=check.valid,
            reason=check.reason.value if check.reason else None,
            min_subtotal_cents=check.min_subtotal_cents,
            amount_cents=check.amount,
        )
        match check.kind:
            case Fixed(value_cents=v):
                out.kind, out.value_cents = "FIXED", v
            case Percent(percent=p):
                out.kind, out.percent = "PERCENT", p
        return out


class DiscountIn(Schema):
    code: str = Field(min_length=2, max_length=32)
    kind: Literal["FIXED", "PERCENT"]
    value_cents: int | None = Field(default=None, ge=0)
    percent: int | None = Field(default=None, ge=1, le=100)
    min_subtotal_cents: int | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    active: bool = True

    @model_validator(mode="after")
    def _value_matches_kind(self) -> DiscountIn:
        if self.kind == "FIXED" and self.value_cents is None:
            raise ValueError("valueCents is required for FIXED codes")
        if self.kind == "PERCENT" and self.percent is None:
            raise ValueError("percent is required for PERCENT codes")
        return self

    def to_domain(self) -> DiscountDraft:
        kind = Fixed(self.value_cents or 0) if self.kind == "FIXED" else Percent(self.percent or 0)
        return DiscountDraft(
            code=self.code,
            kind=kind,
            min_subtotal_cents=self.min_subtotal_cents,
            usage_limit=self.usage_limit,
            starts_at=_naive_utc(self.starts_at),
            ends_at=_naive_utc(self.ends_at),
            active=self.active,
        )


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class DiscountOut(Schema):
    id: int
    code: str
    kind: str
    value_cents: int | None
    percent: int | None
    min_subtotal_cents: int | None
    usage_limit: int | None
    times_used: int
    active: bool

    @classmethod
    def from_domain(cls, code: DiscountCode) -> DiscountOut:
        return cls(
            id=code.id,
            code=code.code,
            kind=code.kind.tag,
            value_cents=code.kind.value_cents if isinstance(code.kind, Fixed) else None,
            percent=code.kind.percent if isinstance(code.kind, Percent) else None,
            min_subtotal_cents=code.min_subtotal_cents,
            usage_limit=code.usage_limit,
            times_used=code.times_used,
            active=code.active,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Payments
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentIntentIn(Schema):
    order_id: str = Field(min_length=1)


class PaymentIntentOut(Schema):
    order_id: str
    payment_intent_id: str
    client_secret: str
    reused: bool

    @classmethod
    def from_domain(cls, intent: PaymentIntent) -> PaymentIntentOut:
        return cls(
            order_id=intent.order_id,
            payment_intent_id=intent.payment_intent_id,
            client_secret=intent.client_secret,
            reused=intent.reused,
        )


class WebhookOut(Schema):
    received: bool = True
    duplicate: bool

    @classmethod
    def from_domain(cls, receipt: WebhookReceipt) -> WebhookOut:
        return cls(duplicate=receipt.duplicate)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class StatusIn(Schema):
    status: str = Field(min_length=1)


class OrderItemOut(Schema):
    product_id: str
    sku: str
    name: str
    size: str | None
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    customization: dict[str, Any] | None

    @classmethod
    def from_domain(cls, item: OrderItem) -> OrderItemOut:
        return cls(
            product_id=item.product_id,
            sku=item.sku,
            name=item.name,
            size=item.size,
            quantity=item.quantity,
            unit_price_cents=item.unit_price,
            line_total_cents=item.line_total,
            customization=item.customization.to_dict() if item.customization else None,
        )


class OrderOut(Schema):
    id: str
    status: str
    currency: str
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    tax_inclusive: bool
    email: str | None
    shipping_address: dict[str, Any]
    created_at: datetime
    paid_at: datetime | None
    items: list[OrderItemOut]

    @classmethod
    def from_domain(cls, order: Order) -> OrderOut:
        return cls(
            id=order.id,
            status=order.status.value,
            currency=order.currency,
            subtotal_cents=order.subtotal,
            discount_cents=order.discount,
            tax_cents=order.tax,
            shipping_cents=order.shipping,
            total_cents=order.total,
            tax_inclusive=order.tax_inclusive,
            email=order.email,
            shipping_address=dict(order.shipping_address),
            created_at=order.created_at,
            paid_at=order.paid_at,
            items=[OrderItemOut.from_domain(i) for i in order.items],
        )


__all__ = (
    "AddressIn",
    "CustomizationIn",
    "CheckoutLineIn",
    "CheckoutIn",
    "CheckoutOut",
    "DiscountCheckOut",
    "DiscountIn",
    "DiscountOut",
    "PaymentIntentIn",
    "PaymentIntentOut",
    "WebhookOut",
    "StatusIn",
    "OrderItemOut",
    "OrderOut",
)
