"""Shared pytest fixtures for settlement tests.

Every test gets a fresh in-memory database; components are built on top of
it with zero-rate pricing and a resilience context that never really sleeps.
"""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator

import pytest
import structlog

from settlement.checkout import CartRepository, CheckoutOrchestrator, FlatRates
from settlement.orders import OrderRepository
from settlement.payments import (
    BreakerPolicy,
    PaymentIntentManager,
    ResilienceContext,
    RetryPolicy,
    SimulatedProvider,
)
from settlement.store import create_database
from settlement.webhooks import WebhookProcessor
from tests.helpers import FakeClock, RecordingSleep, Seeder, SessionFactory


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Plain console output so capsys can capture log lines."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
async def db() -> AsyncIterator[SessionFactory]:
    session_factory, engine = await create_database("sqlite+aiosqlite:///:memory:")
    yield session_factory
    await engine.dispose()


@pytest.fixture
def seed(db: SessionFactory) -> Seeder:
    return Seeder(db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def resilience(clock: FakeClock, sleep: RecordingSleep) -> ResilienceContext:
    return ResilienceContext(
        RetryPolicy(attempts=3, base_delay=1.0, factor=2.0, max_delay=10.0, jitter=False),
        BreakerPolicy(failure_threshold=5, reset_timeout=60.0, success_threshold=3),
        timeout=5.0,
        clock=clock,
        sleep=sleep,
    )


@pytest.fixture
def orders() -> OrderRepository:
    return OrderRepository()


@pytest.fixture
def orchestrator(db: SessionFactory, orders: OrderRepository) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, rates=FlatRates(), orders=orders)


@pytest.fixture
def provider() -> SimulatedProvider:
    return SimulatedProvider()


@pytest.fixture
def intents(
    db: SessionFactory,
    provider: SimulatedProvider,
    resilience: ResilienceContext,
    orders: OrderRepository,
) -> PaymentIntentManager:
    return PaymentIntentManager(db, provider, resilience=resilience, machine=orders.machine)


@pytest.fixture
def webhooks(db: SessionFactory, orders: OrderRepository) -> WebhookProcessor:
    return WebhookProcessor(db, orders=orders, carts=CartRepository())
