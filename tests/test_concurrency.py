"""Concurrent checkouts against a file-backed database.

In-memory databases share one connection, so real interleaving needs a file.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from kungfu import Error, Ok

from settlement.checkout import CheckoutOrchestrator, FlatRates
from settlement.errors import ErrorKind
from settlement.store import create_database
from tests.helpers import Seeder, SessionFactory, checkout_request, line


@pytest.fixture
async def file_db(tmp_path: Path) -> AsyncIterator[SessionFactory]:
    session_factory, engine = await create_database(
        f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}"
    )
    yield session_factory
    await engine.dispose()


class TestNoOverselling:
    """Two checkouts race for the same units."""

    async def test_one_of_two_over_committing_checkouts_wins(
        self, file_db: SessionFactory
    ) -> None:
        seed = Seeder(file_db)
        await seed.product("tee", sizes={"M": 10})
        orchestrator = CheckoutOrchestrator(file_db, rates=FlatRates())

        results = await asyncio.gather(
            orchestrator.checkout(checkout_request("chk-race-a", line(quantity=6))),
            orchestrator.checkout(checkout_request("chk-race-b", line(quantity=6))),
        )

        wins, losses = [], []
        for result in results:
            match result:
                case Ok(receipt):
                    wins.append(receipt)
                case Error(e):
                    losses.append(e)
        assert len(wins) == 1
        assert len(losses) == 1
        assert losses[0].kind is ErrorKind.STOCK_CONFLICT
        assert await seed.stock("tee", "M") == 4

    async def test_same_key_concurrently_creates_one_order(self, file_db: SessionFactory) -> None:
        seed = Seeder(file_db)
        await seed.product("tee", sizes={"M": 10})
        orchestrator = CheckoutOrchestrator(file_db, rates=FlatRates())
        request = checkout_request("chk-same", line(quantity=3))

        results = await asyncio.gather(
            orchestrator.checkout(request),
            orchestrator.checkout(request),
        )

        order_ids = set()
        for result in results:
            match result:
                case Ok(receipt):
                    order_ids.add(receipt.order_id)
                case Error(e):
                    pytest.fail(f"unexpected error {e!r}")
        assert len(order_ids) == 1
        assert await seed.stock("tee", "M") == 7


class TestDiscountUsage:
    """Two checkouts race for the last use of a code."""

    async def test_single_use_code_is_consumed_once(self, file_db: SessionFactory) -> None:
        seed = Seeder(file_db)
        await seed.product("tee", sizes={"M": 10})
        await seed.discount("LASTONE", value_cents=500, usage_limit=1)
        orchestrator = CheckoutOrchestrator(file_db, rates=FlatRates())

        results = await asyncio.gather(
            orchestrator.checkout(
                checkout_request("chk-last-a", line(quantity=2), discount_code="LASTONE")
            ),
            orchestrator.checkout(
                checkout_request("chk-last-b", line(quantity=3), discount_code="LASTONE")
            ),
        )

        wins, losses = [], []
        for result in results:
            match result:
                case Ok(receipt):
                    wins.append(receipt)
                case Error(e):
                    losses.append(e)
        assert len(wins) == 1
        assert len(losses) == 1
        assert losses[0].kind is ErrorKind.DISCOUNT_EXHAUSTED
        assert wins[0].discount == 500
        assert await seed.times_used("LASTONE") == 1
        # Only the winner's units left the shelf.
        sold = sum(item.quantity for item in wins[0].items)
        assert await seed.stock("tee", "M") == 10 - sold
