"""
Discount types — closed kind variant, validated code, rejection reasons.

The stored ``kind`` string is resolved once, in DiscountCode.from_row();
business logic only ever matches on Fixed | Percent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from settlement._types import Cents
from settlement.errors import SettlementError, SettlementErrors
from settlement.store import DiscountCodeTable


# ═══════════════════════════════════════════════════════════════════════════════
# Discount Kind — Tagged Variant
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Fixed:
    """Flat amount off. Never discounts below zero."""

    value_cents: Cents

    def amount(self, subtotal: Cents) -> Cents:
        return max(0, min(subtotal, self.value_cents))

    @property
    def tag(self) -> str:
        return "FIXED"


@dataclass(frozen=True, slots=True)
class Percent:
    """Percentage off, floored to whole minor units."""

    percent: int

    def amount(self, subtotal: Cents) -> Cents:
        return max(0, min(subtotal, subtotal * self.percent // 100))

    @property
    def tag(self) -> str:
        return "PERCENT"


type DiscountKind = Fixed | Percent


def parse_kind(tag: str, value_cents: int | None, percent: int | None) -> DiscountKind:
    """Resolve a stored kind string. Raises ValueError for rows that cannot be priced."""
    match tag.strip().upper():
        case "FIXED":
            if value_cents is None:
                raise ValueError("FIXED discount without value_cents")
            return Fixed(value_cents)
        case "PERCENT":
            if percent is None:
                raise ValueError("PERCENT discount without percent")
            return Percent(percent)
        case other:
            raise ValueError(f"Unknown discount kind: {other}")


# ═══════════════════════════════════════════════════════════════════════════════
# Validated Code
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DiscountCode:
    id: int
    code: str
    kind: DiscountKind
    min_subtotal_cents: Cents | None
    usage_limit: int | None
    times_used: int
    active: bool
    starts_at: datetime | None
    ends_at: datetime | None

    @classmethod
    def from_row(cls, row: DiscountCodeTable) -> DiscountCode:
        return cls(
            id=row.id,
            code=row.code,
            kind=parse_kind(row.kind, row.value_cents, row.percent),
            min_subtotal_cents=row.min_subtotal_cents,
            usage_limit=row.usage_limit,
            times_used=row.times_used,
            active=row.active,
            starts_at=row.starts_at,
            ends_at=row.ends_at,
        )

    def is_active(self, now: datetime) -> bool:
        if not self.active:
            return False
        if self.starts_at is not None and now < self.starts_at:
            return False
        if self.ends_at is not None and now > self.ends_at:
            return False
        return True

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and self.times_used >= self.usage_limit


def normalize_code(code: str) -> str:
    """Codes are case-insensitive and stored upper-cased."""
    return code.strip().upper()


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AppliedDiscount:
    """A validated code and the amount it takes off this subtotal."""

    code: DiscountCode
    amount: Cents

    @property
    def kind(self) -> DiscountKind:
        return self.code.kind


class Rejection(Enum):
    """First failing check, in evaluation order."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"
    MIN_SUBTOTAL_UNMET = "min_subtotal"


@dataclass(frozen=True, slots=True)
class DiscountRejected:
    reason: Rejection
    code: str
    required: Cents | None = None

    def to_error(self) -> SettlementError:
        match self.reason:
            case Rejection.NOT_FOUND | Rejection.INACTIVE:
                return SettlementErrors.invalid_discount(self.code, self.reason.value)
            case Rejection.EXHAUSTED:
                return SettlementErrors.discount_exhausted(self.code)
            case Rejection.MIN_SUBTOTAL_UNMET:
                return SettlementErrors.discount_min_subtotal(self.code, self.required or 0)


@dataclass(frozen=True, slots=True)
class DiscountCheck:
    """Answer of the read-only pre-check."""

    valid: bool
    reason: Rejection | None = None
    kind: DiscountKind | None = None
    min_subtotal_cents: Cents | None = None
    amount: Cents | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Fixed",
    "Percent",
    "DiscountKind",
    "parse_kind",
    "DiscountCode",
    "normalize_code",
    "AppliedDiscount",
    "Rejection",
    "DiscountRejected",
    "DiscountCheck",
)
