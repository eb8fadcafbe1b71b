"""
Payment types — provider intents and the manager's result.
"""

from __future__ import annotations

from dataclasses import dataclass

from settlement._types import Cents


@dataclass(frozen=True, slots=True)
class ProviderIntent:
    """What the provider returned for an intent."""

    provider_ref: str
    client_secret: str
    amount: Cents
    currency: str


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """
    Intent handed to the client.

    Note: reused=True when an existing PENDING record was returned instead
    of creating a new provider intent.
    """

    order_id: str
    payment_intent_id: str
    client_secret: str
    amount: Cents
    currency: str
    reused: bool = False


class ProviderError(Exception):
    """
    Provider call failed with an HTTP-like status.

    status=None means no response was received.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


__all__ = ("ProviderIntent", "PaymentIntent", "ProviderError")
