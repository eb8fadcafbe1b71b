"""
settlement — checkout and payment settlement core.

    from settlement import checkout as C    # Cart → durable order
    from settlement import payments as P    # Provider intents, resilience
    from settlement import webhooks as W    # Provider outcomes, exactly once
    from settlement import orders as O      # Repository + state machine

    from settlement.service import SettlementService
    from settlement.api import create_app
"""

from settlement import stock
from settlement import discount
from settlement import orders
from settlement import checkout
from settlement import payments
from settlement import webhooks
from settlement import saga
from settlement.errors import ErrorKind, SettlementError, SettlementErrors

__version__ = "0.1.0"

__all__ = (
    "stock",
    "discount",
    "orders",
    "checkout",
    "payments",
    "webhooks",
    "saga",
    "ErrorKind",
    "SettlementError",
    "SettlementErrors",
)
