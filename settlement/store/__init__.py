"""
Store — SQLAlchemy schema and session factory.

    from settlement import store

    session_factory, engine = await store.create_database(settings.database_url)
    async with session_factory() as session, session.begin():
        session.add(store.ProductTable(id="tee", sku="TEE", name="Tee", price_cents=2500))
"""

from settlement.store._tables import (
    Base,
    ProductTable,
    SizeVariantTable,
    DiscountCodeTable,
    CartTable,
    CartLineTable,
    OrderTable,
    OrderItemTable,
    OrderEventTable,
    PaymentStatus,
    PaymentRecordTable,
    ProcessedWebhookEventTable,
)
from settlement.store._database import create_engine, create_database

__all__ = (
    # Tables
    "Base",
    "ProductTable",
    "SizeVariantTable",
    "DiscountCodeTable",
    "CartTable",
    "CartLineTable",
    "OrderTable",
    "OrderItemTable",
    "OrderEventTable",
    "PaymentStatus",
    "PaymentRecordTable",
    "ProcessedWebhookEventTable",
    # Setup
    "create_engine",
    "create_database",
)
