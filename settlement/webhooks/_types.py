"""
Webhook types — normalized provider events and processing receipts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PaymentOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """A provider event reduced to what settlement acts on."""

    event_id: str
    provider_ref: str
    outcome: PaymentOutcome


class Disposition(Enum):
    """What processing did with an event."""

    CAPTURED = "captured"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    ALREADY_SETTLED = "already_settled"
    LATE_CAPTURE = "late_capture"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class WebhookReceipt:
    disposition: Disposition
    event_id: str | None = None
    provider_ref: str | None = None
    order_id: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.disposition is Disposition.DUPLICATE


__all__ = ("PaymentOutcome", "WebhookEvent", "Disposition", "WebhookReceipt")
