"""Tests for 24h stats aggregation."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from swap_indexer.database.repository import SQLiteEventStore
from swap_indexer.models import MarketStats24h, PriceSnapshot, StatsHistory
from swap_indexer.pipeline.stats import StatsAggregator, compute_stats, get_24h_stats
from tests.conftest import MARKET_A, MARKET_B, make_event

NOW = 1_700_100_000
HOUR = 3600


def _snapshot(timestamp: int, price: str) -> PriceSnapshot:
    return PriceSnapshot(
        market_id=MARKET_A.id,
        mark_price=Decimal(price),
        oracle_price=None,
        block_number=1,
        timestamp=timestamp,
    )


def test_compute_stats_requires_events() -> None:
    """Test stats are never built from an empty window."""
    with pytest.raises(ValueError):
        compute_stats(MARKET_A, [], Decimal("1"), None, NOW)


def test_compute_stats_volume_and_range() -> None:
    """Test volume sums absolute quote deltas; high/low come from trade prices."""
    events = [
        make_event(block_number=1, notional="100", avg_price="10"),
        make_event(block_number=2, notional="-40", avg_price="12", base_delta="-1"),
        make_event(block_number=3, notional="60", avg_price="9"),
    ]

    stats = compute_stats(MARKET_A, events, Decimal("11"), Decimal("10"), NOW)

    assert stats.volume_24h_usd == Decimal("200")
    assert stats.trades_24h == 3
    assert stats.high_24h == Decimal("12")
    assert stats.low_24h == Decimal("9")
    assert stats.change_24h_percent == Decimal("10")
    assert stats.history == StatsHistory.COMPLETE
    assert stats.last_updated == NOW


def test_refresh_counts_only_window_events(store: SQLiteEventStore) -> None:
    """Test a swap 30h ago is excluded while one 2h ago is counted."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> MarketStats24h | None:
        await store.insert_events(
            [
                make_event(block_number=1, timestamp=NOW - 30 * HOUR, notional="50"),
                make_event(block_number=2, timestamp=NOW - 2 * HOUR, notional="100"),
            ],
        )
        await aggregator.refresh(MARKET_A)
        return await get_24h_stats(store, MARKET_A.id)

    stats = asyncio.run(scenario())

    assert stats is not None
    assert stats.volume_24h_usd == Decimal("100")
    assert stats.trades_24h == 1


def test_refresh_without_old_snapshot_is_insufficient(store: SQLiteEventStore) -> None:
    """Test missing 24h-old price leaves the change unset instead of zero."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> MarketStats24h | None:
        await store.insert_event(make_event(timestamp=NOW - HOUR, avg_price="101"))
        await store.insert_snapshot(_snapshot(NOW - 10 * HOUR, "103"))
        return await aggregator.refresh(MARKET_A)

    stats = asyncio.run(scenario())

    assert stats is not None
    assert stats.history == StatsHistory.INSUFFICIENT
    assert stats.price_24h_ago is None
    assert stats.change_24h_percent is None
    assert stats.current_price == Decimal("103")


def test_refresh_with_old_snapshot_computes_change(store: SQLiteEventStore) -> None:
    """Test the change is measured against the snapshot at the start of the window."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> MarketStats24h | None:
        await store.insert_event(make_event(timestamp=NOW - HOUR))
        await store.insert_snapshot(_snapshot(NOW - 25 * HOUR, "80"))
        await store.insert_snapshot(_snapshot(NOW - 24 * HOUR - 60, "100"))
        await store.insert_snapshot(_snapshot(NOW - 60, "110"))
        return await aggregator.refresh(MARKET_A)

    stats = asyncio.run(scenario())

    assert stats is not None
    assert stats.price_24h_ago == Decimal("100")
    assert stats.current_price == Decimal("110")
    assert stats.change_24h_percent == Decimal("10")
    assert stats.history == StatsHistory.COMPLETE


def test_refresh_falls_back_to_last_trade_price(store: SQLiteEventStore) -> None:
    """Test the current price is the last trade when no snapshot exists."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> MarketStats24h | None:
        await store.insert_events(
            [
                make_event(block_number=5, timestamp=NOW - 3 * HOUR, avg_price="90"),
                make_event(block_number=9, timestamp=NOW - HOUR, avg_price="95"),
            ],
        )
        return await aggregator.refresh(MARKET_A)

    stats = asyncio.run(scenario())

    assert stats is not None
    assert stats.current_price == Decimal("95")


def test_empty_window_keeps_previous_row(store: SQLiteEventStore) -> None:
    """Test a quiet market keeps its previous stats row."""
    clock = {"now": NOW}
    aggregator = StatsAggregator(store, clock=lambda: clock["now"])

    async def scenario() -> tuple[MarketStats24h | None, MarketStats24h | None, MarketStats24h | None]:
        await store.insert_event(make_event(timestamp=NOW - HOUR, notional="250"))
        first = await aggregator.refresh(MARKET_A)
        clock["now"] = NOW + 48 * HOUR
        second = await aggregator.refresh(MARKET_A)
        return first, second, await store.get_24h_stats(MARKET_A.id)

    first, second, stored = asyncio.run(scenario())

    assert first is not None
    assert second is None
    assert stored == first


def test_refresh_all_counts_updated_markets(store: SQLiteEventStore) -> None:
    """Test markets without swaps are not counted as updated."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> int:
        await store.insert_event(make_event(MARKET_A, timestamp=NOW - HOUR))
        return await aggregator.refresh_all([MARKET_A, MARKET_B])

    assert asyncio.run(scenario()) == 1


def test_get_24h_stats_returns_none_on_store_error(store: SQLiteEventStore) -> None:
    """Test the read path degrades to None when the store fails."""

    async def scenario() -> MarketStats24h | None:
        await store.close()
        return await get_24h_stats(store, MARKET_A.id)

    assert asyncio.run(scenario()) is None


def test_refresh_store_error_is_contained(store: SQLiteEventStore) -> None:
    """Test a failing store does not propagate out of refresh."""
    aggregator = StatsAggregator(store, clock=lambda: NOW)

    async def scenario() -> MarketStats24h | None:
        await store.close()
        return await aggregator.refresh(MARKET_A)

    assert asyncio.run(scenario()) is None
