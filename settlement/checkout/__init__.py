"""
Checkout — turn a cart into a durable PENDING order.

    from settlement import checkout as CO

    orchestrator = CO.CheckoutOrchestrator(session_factory, rates=CO.FlatRates())
    result = await orchestrator.checkout(
        CO.CheckoutRequest(
            idempotency_key="chk_7f3a9c1e",
            shipping_address=CO.Address(
                full_name="Ada Lovelace",
                line1="1 Analytical Way",
                city="London",
                postal_code="N1 9GU",
                country="GB",
            ),
            lines=(CO.CheckoutLine("tee", quantity=2, size="M"),),
        )
    )
"""

from settlement.checkout._types import (
    MAX_LINE_QUANTITY,
    Address,
    CheckoutLine,
    CheckoutRequest,
    PricedLine,
    CheckoutReceipt,
)
from settlement.checkout._rates import (
    RateQuery,
    Rates,
    RatePolicy,
    total_of,
    FlatRates,
    TaxRule,
    ShippingRule,
    DEFAULT_TAX_RULES,
    DEFAULT_SHIPPING_RULES,
    RuleBasedRates,
)
from settlement.checkout._cart import CartRepository
from settlement.checkout._orchestrator import (
    CheckoutOrchestrator,
    new_order_id,
    demand_by_variant,
)

__all__ = (
    # Types
    "MAX_LINE_QUANTITY",
    "Address",
    "CheckoutLine",
    "CheckoutRequest",
    "PricedLine",
    "CheckoutReceipt",
    # Rates
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
    # Cart
    "CartRepository",
    # Orchestrator
    "CheckoutOrchestrator",
    "new_order_id",
    "demand_by_variant",
)
