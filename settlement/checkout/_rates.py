"""
Rate policies — tax and shipping as injected, pure functions.

The orchestrator only knows the RatePolicy protocol. RuleBasedRates is a
table-driven default; FlatRates is a fixed policy for tests and markets
without rules.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from settlement._types import Cents
from settlement.checkout._types import Address


@dataclass(frozen=True, slots=True)
class RateQuery:
    subtotal: Cents
    discount: Cents
    item_count: int
    destination: Address
    currency: str

    @property
    def taxable(self) -> Cents:
        return max(0, self.subtotal - self.discount)


@dataclass(frozen=True, slots=True)
class Rates:
    """
    tax_inclusive: prices already contain tax; tax is reported, not added.
    """

    tax: Cents
    shipping: Cents
    tax_inclusive: bool = False
    breakdown: dict[str, Any] = field(default_factory=dict)


class RatePolicy(Protocol):
    def quote(self, query: RateQuery) -> Rates: ...


def total_of(subtotal: Cents, discount: Cents, rates: Rates) -> Cents:
    """total = subtotal - discount + tax + shipping (tax dropped when inclusive)."""
    tax = 0 if rates.tax_inclusive else rates.tax
    return subtotal - discount + tax + rates.shipping


# ═══════════════════════════════════════════════════════════════════════════════
# Flat
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class FlatRates:
    tax: Cents = 0
    shipping: Cents = 0

    def quote(self, query: RateQuery) -> Rates:
        return Rates(tax=self.tax, shipping=self.shipping)


# ═══════════════════════════════════════════════════════════════════════════════
# Rule-based
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TaxRule:
    country: str
    basis_points: int  # 725 = 7.25%
    label: str
    region: str | None = None

    def matches(self, address: Address) -> bool:
        if address.country.upper() != self.country:
            return False
        return self.region is None or (address.region or "").upper() == self.region


@dataclass(frozen=True, slots=True)
class ShippingRule:
    country: str
    base: Cents
    per_item: Cents
    label: str

    def matches(self, address: Address) -> bool:
        return address.country.upper() == self.country


DEFAULT_TAX_RULES: tuple[TaxRule, ...] = (
    TaxRule("US", 725, "US-CA", region="CA"),
    TaxRule("US", 888, "US-NY", region="NY"),
    TaxRule("GB", 2000, "UK-VAT"),
)

DEFAULT_SHIPPING_RULES: tuple[ShippingRule, ...] = (
    ShippingRule("US", 599, 100, "US_STANDARD"),
    ShippingRule("GB", 499, 75, "UK_STANDARD"),
)


@dataclass(frozen=True, slots=True)
class RuleBasedRates:
    """First matching rule wins for tax and for shipping."""

    tax_rules: Sequence[TaxRule] = DEFAULT_TAX_RULES
    shipping_rules: Sequence[ShippingRule] = DEFAULT_SHIPPING_RULES
    inclusive_currencies: frozenset[str] = frozenset()
    free_shipping_threshold: Cents | None = 7500

    def quote(self, query: RateQuery) -> Rates:
        address = query.destination
        tax_rule = next((r for r in self.tax_rules if r.matches(address)), None)
        ship_rule = next((r for r in self.shipping_rules if r.matches(address)), None)

        bp = tax_rule.basis_points if tax_rule else 0
        inclusive = query.currency.upper() in self.inclusive_currencies
        if inclusive:
            # Portion of a gross amount that is tax: gross - gross / (1 + rate)
            tax = query.taxable - (query.taxable * 10_000 + (10_000 + bp) // 2) // (10_000 + bp)
        else:
            tax = (query.taxable * bp + 5_000) // 10_000

        shipping = 0
        if ship_rule is not None:
            shipping = ship_rule.base + ship_rule.per_item * query.item_count
        free = (
            self.free_shipping_threshold is not None
            and query.subtotal >= self.free_shipping_threshold
        )
        if free:
            shipping = 0

        return Rates(
            tax=tax,
            shipping=shipping,
            tax_inclusive=inclusive,
            breakdown={
                "taxRule": tax_rule.label if tax_rule else None,
                "taxBasisPoints": bp,
                "shippingRule": ship_rule.label if ship_rule else None,
                "freeShipping": free,
            },
        )


__all__ = (
    "RateQuery",
    "Rates",
    "RatePolicy",
    "total_of",
    "FlatRates",
    "TaxRule",
    "ShippingRule",
    "DEFAULT_TAX_RULES",
    "DEFAULT_SHIPPING_RULES",
    "RuleBasedRates",
)
