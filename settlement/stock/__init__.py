"""
Stock — per-variant inventory with compare-and-set decrements.

    from settlement import stock as St

    ledger = St.StockLedger()
    key = St.VariantKey("tee", "M")
    if not await ledger.decrement(session, key, 2):
        ...  # someone else took the last units
"""

from settlement.stock._ledger import VariantKey, Shortfall, StockLedger

__all__ = ("VariantKey", "Shortfall", "StockLedger")
