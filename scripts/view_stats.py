"""Simple script to view cached 24h stats from the store."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from swap_indexer.database.store_factory import open_store
from swap_indexer.markets.registry import MarketRegistry
from swap_indexer.pipeline.stats import get_24h_stats
from swap_indexer.utils.config import MARKETS_FILE


async def view_stats(market_names: list[str]) -> None:
    """Print the stats row of each market (all markets when none are named)."""
    registry = MarketRegistry.from_json(MARKETS_FILE) if MARKETS_FILE else MarketRegistry()
    markets = [m for m in registry.list_all() if not market_names or m.name in market_names]

    store = open_store(write_credentials=None)
    try:
        print(f"{'Market':<28} {'Price':>12} {'24h %':>9} {'Volume':>14} {'Trades':>7} {'High':>12} {'Low':>12}  Updated")
        print("-" * 120)
        for market in markets:
            stats = await get_24h_stats(store, market.id)
            if stats is None:
                print(f"{market.name:<28} {'no data':>12}")
                continue
            change = "n/a" if stats.change_24h_percent is None else f"{stats.change_24h_percent:.2f}"
            updated = datetime.fromtimestamp(stats.last_updated).strftime("%Y-%m-%d %H:%M:%S")
            print(
                f"{market.name:<28} {stats.current_price:>12.4f} {change:>9} {stats.volume_24h_usd:>14.2f} "
                f"{stats.trades_24h:>7} {stats.high_24h:>12.4f} {stats.low_24h:>12.4f}  {updated}",
            )
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(view_stats(sys.argv[1:]))
