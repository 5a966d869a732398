"""Tests for the SQLite event store."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path

import pytest

from swap_indexer.database.repository import SQLiteEventStore
from swap_indexer.database.store_factory import open_store
from swap_indexer.errors import StoreClosedError, StoreError
from swap_indexer.models import InsertResult, MarketStats24h, PriceSnapshot, StatsHistory
from tests.conftest import MARKET_A, MARKET_B, make_event


def _snapshot(timestamp: int, price: str, market_id: str = MARKET_A.id) -> PriceSnapshot:
    return PriceSnapshot(
        market_id=market_id,
        mark_price=Decimal(price),
        oracle_price=None,
        block_number=timestamp // 12,
        timestamp=timestamp,
    )


def _stats(trades: int, volume: str) -> MarketStats24h:
    return MarketStats24h(
        market_id=MARKET_A.id,
        market_name=MARKET_A.name,
        current_price=Decimal("101.5"),
        price_24h_ago=None,
        change_24h_percent=None,
        volume_24h_usd=Decimal(volume),
        trades_24h=trades,
        high_24h=Decimal("102"),
        low_24h=Decimal("99"),
        last_updated=1_700_000_000,
        history=StatsHistory.INSUFFICIENT,
    )


def test_insert_event_is_idempotent(store: SQLiteEventStore) -> None:
    """Test inserting the same natural key twice stores one row."""
    event = make_event(block_number=5, log_index=1)

    async def scenario() -> tuple[InsertResult, InsertResult, int]:
        first = await store.insert_event(event)
        second = await store.insert_event(event)
        return first, second, await store.get_event_count(MARKET_A.id)

    first, second, count = asyncio.run(scenario())

    assert first == InsertResult.INSERTED
    assert second == InsertResult.DUPLICATE
    assert count == 1


def test_same_tx_different_market_is_distinct(store: SQLiteEventStore) -> None:
    """Test alias markets sharing a contract each store the swap."""
    a = make_event(MARKET_A, block_number=5)
    b = make_event(MARKET_B, block_number=5)
    assert a.tx_hash == b.tx_hash
    assert a.natural_key != b.natural_key

    async def scenario() -> int:
        await store.insert_event(a)
        await store.insert_event(b)
        return await store.get_event_count()

    assert asyncio.run(scenario()) == 2


def test_insert_events_counts_only_new_rows(store: SQLiteEventStore) -> None:
    """Test batch inserts report only non-duplicate rows."""
    events = [make_event(block_number=1, log_index=i) for i in range(3)]

    async def scenario() -> tuple[int, int, int]:
        first = await store.insert_events(events[:2])
        second = await store.insert_events(events)
        empty = await store.insert_events([])
        return first, second, empty

    assert asyncio.run(scenario()) == (2, 1, 0)


def test_decimal_precision_round_trip(store: SQLiteEventStore) -> None:
    """Test values survive storage with full 18-decimal precision."""
    event = make_event(notional="1234.123456789012345678", avg_price="0.000000000000000001")

    async def scenario() -> list:
        await store.insert_event(event)
        return await store.get_events(MARKET_A.id)

    (stored,) = asyncio.run(scenario())

    assert stored == event


def test_last_indexed_block(store: SQLiteEventStore) -> None:
    """Test the cursor is the highest stored block or checkpoint."""

    async def scenario() -> list[int | None]:
        results = [await store.last_indexed_block(MARKET_A.id)]
        await store.insert_events([make_event(block_number=b) for b in (3, 100, 42)])
        results.append(await store.last_indexed_block(MARKET_A.id))
        await store.save_checkpoint(MARKET_A.id, 500)
        results.append(await store.last_indexed_block(MARKET_A.id))
        await store.save_checkpoint(MARKET_A.id, 200)
        results.append(await store.last_indexed_block(MARKET_A.id))
        results.append(await store.last_indexed_block(MARKET_B.id))
        return results

    assert asyncio.run(scenario()) == [None, 100, 500, 500, None]


def test_events_in_window_ordered_and_filtered(store: SQLiteEventStore) -> None:
    """Test window queries filter by timestamp and order by block then log index."""
    events = [
        make_event(block_number=20, log_index=1, timestamp=2000),
        make_event(block_number=10, log_index=0, timestamp=1000),
        make_event(block_number=20, log_index=0, timestamp=2000),
        make_event(block_number=5, log_index=0, timestamp=500),
    ]

    async def scenario() -> list:
        await store.insert_events(events)
        return await store.events_in_window(MARKET_A.id, 1000)

    window = asyncio.run(scenario())

    assert [e.ordering_key for e in window] == [(10, 0), (20, 0), (20, 1)]


def test_latest_snapshot(store: SQLiteEventStore) -> None:
    """Test latest snapshot lookups with and without an upper bound."""

    async def scenario() -> tuple:
        empty = await store.latest_snapshot(MARKET_A.id)
        for ts, price in [(100, "1"), (200, "2"), (300, "3")]:
            await store.insert_snapshot(_snapshot(ts, price))
        return (
            empty,
            await store.latest_snapshot(MARKET_A.id),
            await store.latest_snapshot(MARKET_A.id, at_or_before=250),
            await store.latest_snapshot(MARKET_A.id, at_or_before=200),
            await store.latest_snapshot(MARKET_A.id, at_or_before=50),
            await store.get_snapshot_count(MARKET_A.id),
        )

    empty, latest, before_250, at_200, too_early, count = asyncio.run(scenario())

    assert empty is None
    assert latest.mark_price == Decimal("3")
    assert before_250.mark_price == Decimal("2")
    assert at_200.mark_price == Decimal("2")
    assert too_early is None
    assert count == 3


def test_upsert_stats_replaces_row(store: SQLiteEventStore) -> None:
    """Test one stats row per market, replaced on each upsert."""

    async def scenario() -> tuple:
        missing = await store.get_24h_stats(MARKET_A.id)
        await store.upsert_stats(_stats(1, "100"))
        await store.upsert_stats(_stats(2, "150"))
        return missing, await store.get_24h_stats(MARKET_A.id)

    missing, stats = asyncio.run(scenario())

    assert missing is None
    assert stats == _stats(2, "150")


def test_read_only_store_rejects_writes(db_path: Path) -> None:
    """Test a read-only store can read but not write."""

    async def scenario() -> int:
        writer = SQLiteEventStore(db_path)
        await writer.insert_event(make_event())
        await writer.close()

        reader = SQLiteEventStore(db_path, read_only=True)
        try:
            with pytest.raises(StoreError, match="read-only"):
                await reader.insert_event(make_event(block_number=2))
            with pytest.raises(StoreError, match="read-only"):
                await reader.save_checkpoint(MARKET_A.id, 10)
            return await reader.get_event_count()
        finally:
            await reader.close()

    assert asyncio.run(scenario()) == 1


def test_closed_store_raises(store: SQLiteEventStore) -> None:
    """Test operations after close raise and closing twice is harmless."""

    async def scenario() -> None:
        await store.close()
        await store.close()
        with pytest.raises(StoreClosedError):
            await store.insert_event(make_event())
        with pytest.raises(StoreClosedError):
            await store.last_indexed_block(MARKET_A.id)

    asyncio.run(scenario())


def test_open_store_backends(db_path: Path) -> None:
    """Test store construction per backend."""
    with pytest.raises(StoreError, match="does not exist"):
        open_store(None, backend="sqlite", db_path=db_path)

    writable = open_store("secret", backend="sqlite", db_path=db_path)
    assert isinstance(writable, SQLiteEventStore)
    assert not writable.read_only
    asyncio.run(writable.close())

    read_only = open_store(None, backend="sqlite", db_path=db_path)
    assert read_only.read_only
    asyncio.run(read_only.close())

    with pytest.raises(StoreError, match="Unknown store backend"):
        open_store("secret", backend="mongo", db_path=db_path)
