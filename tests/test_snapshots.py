"""Tests for price snapshot recording."""

from __future__ import annotations

import asyncio
from decimal import Decimal

from swap_indexer.database.repository import SQLiteEventStore
from swap_indexer.errors import ChainError
from swap_indexer.models import PriceSnapshot
from swap_indexer.pipeline.snapshots import SnapshotScheduler
from tests.conftest import MARKET_A, MARKET_B, FakeChain

NOW = 1_700_100_000


class BlockingChain(FakeChain):
    """Mark price reads wait until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def read_mark_price(self, contract_address: str) -> Decimal | None:
        self.entered.set()
        await self.release.wait()
        return Decimal("42")


def test_snapshot_records_mark_and_oracle(chain: FakeChain, store: SQLiteEventStore) -> None:
    """Test a snapshot stores both prices, the head block and the clock time."""
    chain.head = 777
    chain.mark_prices[MARKET_A.contract_address.lower()] = Decimal("101.25")
    scheduler = SnapshotScheduler(chain, store, clock=lambda: NOW)

    async def scenario() -> PriceSnapshot | None:
        await scheduler.snapshot(MARKET_A)
        return await store.latest_snapshot(MARKET_A.id)

    snapshot = asyncio.run(scenario())

    assert snapshot is not None
    assert snapshot.mark_price == Decimal("101.25")
    assert snapshot.oracle_price == Decimal("99")
    assert snapshot.block_number == 777
    assert snapshot.timestamp == NOW
    assert snapshot.market_name == "H100-PERP"


def test_snapshot_skipped_without_mark_price(chain: FakeChain, store: SQLiteEventStore) -> None:
    """Test no row is written when the mark price cannot be read."""
    chain.mark_prices[MARKET_A.contract_address.lower()] = None
    scheduler = SnapshotScheduler(chain, store, clock=lambda: NOW)

    async def scenario() -> tuple[PriceSnapshot | None, int]:
        result = await scheduler.snapshot(MARKET_A)
        return result, await store.get_snapshot_count(MARKET_A.id)

    assert asyncio.run(scenario()) == (None, 0)


def test_snapshot_without_oracle_price(chain: FakeChain, store: SQLiteEventStore) -> None:
    """Test a missing oracle price is stored as null."""
    chain.reference_price = None
    scheduler = SnapshotScheduler(chain, store, clock=lambda: NOW)

    async def scenario() -> PriceSnapshot | None:
        await scheduler.snapshot(MARKET_A)
        return await store.latest_snapshot(MARKET_A.id)

    snapshot = asyncio.run(scenario())

    assert snapshot is not None
    assert snapshot.oracle_price is None


def test_overlapping_snapshot_is_skipped(store: SQLiteEventStore) -> None:
    """Test a second trigger while one snapshot is in flight does nothing."""

    async def scenario() -> tuple[PriceSnapshot | None, PriceSnapshot | None, int]:
        chain = BlockingChain()
        scheduler = SnapshotScheduler(chain, store, clock=lambda: NOW)
        first = asyncio.create_task(scheduler.snapshot(MARKET_A))
        await chain.entered.wait()
        second = await scheduler.snapshot(MARKET_A)
        chain.release.set()
        return await first, second, await store.get_snapshot_count(MARKET_A.id)

    first, second, count = asyncio.run(scenario())

    assert first is not None
    assert second is None
    assert count == 1


def test_snapshot_all_isolates_failures(chain: FakeChain, store: SQLiteEventStore) -> None:
    """Test one market's chain failure does not stop the others."""

    class PartlyFailingChain(FakeChain):
        async def read_mark_price(self, contract_address: str) -> Decimal | None:
            if contract_address.lower() == MARKET_A.contract_address.lower():
                raise ChainError("call reverted")
            return Decimal("5")

    scheduler = SnapshotScheduler(PartlyFailingChain(), store, clock=lambda: NOW)

    async def scenario() -> tuple[int, int, int]:
        taken = await scheduler.snapshot_all([MARKET_A, MARKET_B])
        return taken, await store.get_snapshot_count(MARKET_A.id), await store.get_snapshot_count(MARKET_B.id)

    assert asyncio.run(scenario()) == (1, 0, 1)
