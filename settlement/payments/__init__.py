"""
Payments — provider intents behind a resilience context.

    from settlement import payments as P

    manager = P.PaymentIntentManager(
        session_factory,
        provider=P.SimulatedProvider(),
        resilience=P.ResilienceContext.from_settings(settings),
    )

    match await manager.create_intent(order_id):
        case Ok(intent):
            intent.client_secret, intent.reused
        case Error(e):
            e.kind   # ORDER_NOT_FOUND | ORDER_NOT_PAYABLE | PROVIDER_UNAVAILABLE
"""

from settlement.payments._types import PaymentIntent, ProviderError, ProviderIntent
from settlement.payments._provider import (
    PaymentProvider,
    SimulatedProvider,
    StripeProvider,
    build_provider,
)
from settlement.payments._resilience import (
    BreakerPolicy,
    BreakerState,
    BreakerStatus,
    CircuitBreaker,
    ErrorClass,
    ProviderFailure,
    ResilienceContext,
    RetryPolicy,
    classify,
)
from settlement.payments._intents import (
    CANCEL_INTENT,
    CREATE_INTENT,
    PAYABLE,
    PaymentIntentManager,
    intent_key,
    pending_record,
    pending_refs,
)

__all__ = (
    # Types
    "PaymentIntent",
    "ProviderIntent",
    "ProviderError",
    # Providers
    "PaymentProvider",
    "SimulatedProvider",
    "StripeProvider",
    "build_provider",
    # Resilience
    "ErrorClass",
    "classify",
    "RetryPolicy",
    "BreakerPolicy",
    "BreakerState",
    "BreakerStatus",
    "CircuitBreaker",
    "ProviderFailure",
    "ResilienceContext",
    # Manager
    "PaymentIntentManager",
    "PAYABLE",
    "CREATE_INTENT",
    "CANCEL_INTENT",
    "intent_key",
    "pending_record",
    "pending_refs",
)
