"""
Errors — one taxonomy for every component boundary.

Components return ``Result[T, SettlementError]``; raw storage or provider
exceptions never cross a component boundary. The HTTP layer maps
``ErrorKind`` onto status codes.

    match await orchestrator.checkout(request):
        case Ok(receipt):
            ...
        case Error(SettlementError(kind=ErrorKind.STOCK_CONFLICT, details=d)):
            ...
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ═══════════════════════════════════════════════════════════════════════════════
# Error Kind
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorFamily(Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INFRASTRUCTURE = "infrastructure"


class ErrorKind(Enum):
    """
    Wire-level error codes.

    Value is the ``error`` field of the HTTP body.
    """

    EMPTY_CART = "empty_cart"
    STOCK_CONFLICT = "stock_conflict"
    INVALID_DISCOUNT = "invalid_discount"
    DISCOUNT_MIN_SUBTOTAL = "discount_min_subtotal"
    DISCOUNT_EXHAUSTED = "discount_exhausted"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_REQUEST = "invalid_request"
    MALFORMED_WEBHOOK = "malformed_webhook"
    INVALID_SIGNATURE = "invalid_signature"
    ORDER_NOT_FOUND = "order_not_found"
    ORDER_NOT_PAYABLE = "order_not_payable"
    UNKNOWN_PAYMENT_REFERENCE = "unknown_payment_reference"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INFRASTRUCTURE = "infrastructure"

    @property
    def family(self) -> ErrorFamily:
        return _FAMILIES[self]

    @property
    def retryable_by_client(self) -> bool:
        """Conflicts and infrastructure failures may succeed on a later retry."""
        return self.family in (ErrorFamily.CONFLICT, ErrorFamily.INFRASTRUCTURE)


_FAMILIES: dict[ErrorKind, ErrorFamily] = {
    ErrorKind.EMPTY_CART: ErrorFamily.VALIDATION,
    ErrorKind.INVALID_DISCOUNT: ErrorFamily.VALIDATION,
    ErrorKind.DISCOUNT_MIN_SUBTOTAL: ErrorFamily.VALIDATION,
    ErrorKind.DISCOUNT_EXHAUSTED: ErrorFamily.VALIDATION,
    ErrorKind.INVALID_TRANSITION: ErrorFamily.VALIDATION,
    ErrorKind.INVALID_REQUEST: ErrorFamily.VALIDATION,
    ErrorKind.MALFORMED_WEBHOOK: ErrorFamily.VALIDATION,
    ErrorKind.INVALID_SIGNATURE: ErrorFamily.VALIDATION,
    ErrorKind.STOCK_CONFLICT: ErrorFamily.CONFLICT,
    ErrorKind.ORDER_NOT_PAYABLE: ErrorFamily.CONFLICT,
    ErrorKind.ORDER_NOT_FOUND: ErrorFamily.NOT_FOUND,
    ErrorKind.UNKNOWN_PAYMENT_REFERENCE: ErrorFamily.NOT_FOUND,
    ErrorKind.PROVIDER_UNAVAILABLE: ErrorFamily.INFRASTRUCTURE,
    ErrorKind.INFRASTRUCTURE: ErrorFamily.INFRASTRUCTURE,
}


# ═══════════════════════════════════════════════════════════════════════════════
# Error Value
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SettlementError:
    """
    Error value returned by every component.

    details: extra fields merged into the HTTP body (e.g. ``stockErrors``).
    """

    kind: ErrorKind
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.kind.value


class SettlementErrors:
    @staticmethod
    def empty_cart() -> SettlementError:
        return SettlementError(ErrorKind.EMPTY_CART, "Cart is empty")

    @staticmethod
    def stock_conflict(shortfalls: Sequence[Mapping[str, Any]]) -> SettlementError:
        return SettlementError(
            ErrorKind.STOCK_CONFLICT,
            f"{len(shortfalls)} line(s) exceed available stock",
            {"stockErrors": [dict(s) for s in shortfalls]},
        )

    @staticmethod
    def invalid_discount(code: str, reason: str) -> SettlementError:
        return SettlementError(
            ErrorKind.INVALID_DISCOUNT,
            f"Discount code {code} is {reason}",
            {"reason": reason},
        )

    @staticmethod
    def discount_min_subtotal(code: str, required: int) -> SettlementError:
        return SettlementError(
            ErrorKind.DISCOUNT_MIN_SUBTOTAL,
            f"Discount code {code} requires a subtotal of at least {required}",
            {"required": required},
        )

    @staticmethod
    def discount_exhausted(code: str) -> SettlementError:
        return SettlementError(
            ErrorKind.DISCOUNT_EXHAUSTED,
            f"Discount code {code} has reached its usage limit",
        )

    @staticmethod
    def invalid_transition(
        source: str, target: str, allowed: Sequence[str]
    ) -> SettlementError:
        return SettlementError(
            ErrorKind.INVALID_TRANSITION,
            f"Invalid transition from {source} to {target}; allowed: [{', '.join(allowed)}]",
            {"from": source, "to": target, "allowed": list(allowed)},
        )

    @staticmethod
    def invalid_request(message: str) -> SettlementError:
        return SettlementError(ErrorKind.INVALID_REQUEST, message)

    @staticmethod
    def malformed_webhook(message: str) -> SettlementError:
        return SettlementError(ErrorKind.MALFORMED_WEBHOOK, message)

    @staticmethod
    def invalid_signature(message: str) -> SettlementError:
        return SettlementError(ErrorKind.INVALID_SIGNATURE, message)

    @staticmethod
    def order_not_found(order_id: str) -> SettlementError:
        return SettlementError(ErrorKind.ORDER_NOT_FOUND, f"Order {order_id} not found")

    @staticmethod
    def order_not_payable(order_id: str, status: str) -> SettlementError:
        return SettlementError(
            ErrorKind.ORDER_NOT_PAYABLE,
            f"Order {order_id} is {status} and cannot be paid",
            {"status": status},
        )

    @staticmethod
    def unknown_payment_reference(reference: str) -> SettlementError:
        return SettlementError(
            ErrorKind.UNKNOWN_PAYMENT_REFERENCE,
            f"No payment record for {reference}",
        )

    @staticmethod
    def provider_unavailable(message: str) -> SettlementError:
        return SettlementError(ErrorKind.PROVIDER_UNAVAILABLE, message)

    @staticmethod
    def infrastructure(message: str) -> SettlementError:
        return SettlementError(ErrorKind.INFRASTRUCTURE, message)


# ═══════════════════════════════════════════════════════════════════════════════
# Transaction Abort
# ═══════════════════════════════════════════════════════════════════════════════


class AbortTransaction(Exception):
    """
    Raised inside ``session.begin()`` to roll back and surface an error value.

    Note: returning Error from inside the block would commit partial writes.
    """

    def __init__(self, error: SettlementError) -> None:
        super().__init__(error.message)
        self.error = error


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ErrorFamily",
    "ErrorKind",
    "SettlementError",
    "SettlementErrors",
    "AbortTransaction",
)
