"""
Discount — validate and price discount codes.

    from settlement import discount as D

    match await D.DiscountEvaluator().evaluate(session, "save10", subtotal=999):
        case Ok(applied):
            applied.amount            # 99
            applied.kind              # D.Percent(10)
        case Error(rejected):
            rejected.reason           # D.Rejection.EXHAUSTED, ...
"""

from settlement.discount._types import (
    Fixed,
    Percent,
    DiscountKind,
    parse_kind,
    DiscountCode,
    normalize_code,
    AppliedDiscount,
    Rejection,
    DiscountRejected,
    DiscountCheck,
)
from settlement.discount._evaluator import (
    DiscountEvaluator,
    DiscountDraft,
    validate_draft,
    create_code,
)

__all__ = (
    # Kind
    "Fixed",
    "Percent",
    "DiscountKind",
    "parse_kind",
    # Code
    "DiscountCode",
    "normalize_code",
    # Results
    "AppliedDiscount",
    "Rejection",
    "DiscountRejected",
    "DiscountCheck",
    # Evaluator
    "DiscountEvaluator",
    "DiscountDraft",
    "validate_draft",
    "create_code",
)
