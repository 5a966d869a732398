"""Rolling 24h market statistics recomputed from the swap log."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal

from beartype import beartype

from swap_indexer.database.interfaces import EventStore
from swap_indexer.errors import StoreError
from swap_indexer.markets.models import Market
from swap_indexer.models import MarketStats24h, StatsHistory, SwapEvent
from swap_indexer.utils.config import STATS_WINDOW_SECONDS
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

HUNDRED = Decimal(100)


@beartype
def compute_stats(
    market: Market,
    events: Sequence[SwapEvent],
    current_price: Decimal,
    price_24h_ago: Decimal | None,
    now: int,
) -> MarketStats24h:
    """
    Build a stats row from the events of the window.

    Args:
        market: Market the events belong to
        events: Non-empty list of swaps inside the window
        current_price: Latest known price
        price_24h_ago: Price at the start of the window, None if unknown
        now: Unix timestamp of the computation

    Returns:
        The stats row; ``history`` is INSUFFICIENT and the change is None when
        no price from 24h ago is known
    """
    if not events:
        raise ValueError("compute_stats requires at least one event")

    prices = [event.avg_price for event in events]
    change: Decimal | None = None
    history = StatsHistory.INSUFFICIENT
    if price_24h_ago is not None and price_24h_ago != 0:
        change = (current_price - price_24h_ago) / price_24h_ago * HUNDRED
        history = StatsHistory.COMPLETE

    return MarketStats24h(
        market_id=market.id,
        market_name=market.name,
        current_price=current_price,
        price_24h_ago=price_24h_ago,
        change_24h_percent=change,
        volume_24h_usd=sum((event.notional_usd for event in events), Decimal(0)),
        trades_24h=len(events),
        high_24h=max(prices),
        low_24h=min(prices),
        last_updated=now,
        history=history,
    )


class StatsAggregator:
    """
    Recomputes MarketStats24h for a market from the trailing window.

    A window with no swaps leaves the previous row untouched so quiet markets
    keep their last figures instead of flashing zero activity.
    """

    def __init__(
        self,
        store: EventStore,
        clock: Callable[[], float] = time.time,
        window_seconds: int = STATS_WINDOW_SECONDS,
    ) -> None:
        self.store = store
        self.clock = clock
        self.window_seconds = window_seconds
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def refresh(self, market: Market) -> MarketStats24h | None:
        """Recompute and upsert stats. Returns the new row, or None if nothing was written."""
        lock = self._locks[market.id]
        if lock.locked():
            logger.debug(f"Stats refresh for {market.name} already running; skipping")
            return None

        async with lock:
            now = int(self.clock())
            since = now - self.window_seconds
            try:
                events = await self.store.events_in_window(market.id, since)
                if not events:
                    logger.debug(f"{market.name}: no swaps in window; keeping previous stats")
                    return None

                latest = await self.store.latest_snapshot(market.id)
                current_price = latest.mark_price if latest is not None else events[-1].avg_price
                reference = await self.store.latest_snapshot(market.id, at_or_before=since)
                stats = compute_stats(
                    market,
                    events,
                    current_price=current_price,
                    price_24h_ago=reference.mark_price if reference is not None else None,
                    now=now,
                )
                await self.store.upsert_stats(stats)
            except StoreError as e:
                logger.error(f"Error updating market stats for {market.name}: {e}")
                return None

        change_text = "n/a" if stats.change_24h_percent is None else f"{stats.change_24h_percent:.2f}%"
        logger.info(f"{market.name}: ${stats.volume_24h_usd:.2f} volume, {stats.trades_24h} trades, {change_text} change")
        return stats

    async def refresh_all(
        self,
        markets: Iterable[Market],
        should_continue: Callable[[], bool] | None = None,
    ) -> int:
        logger.info("Updating 24h statistics...")
        updated = 0
        for market in markets:
            if should_continue is not None and not should_continue():
                break
            if await self.refresh(market) is not None:
                updated += 1
        return updated

    async def wait_idle(self) -> None:
        """Wait until no refresh is in flight."""
        for lock in list(self._locks.values()):
            async with lock:
                pass


async def get_24h_stats(store: EventStore, market_id: str) -> MarketStats24h | None:
    """Read path for consumers: the cached stats row, or None when not found."""
    try:
        return await store.get_24h_stats(market_id)
    except StoreError as e:
        logger.error(f"Error fetching 24h stats for {market_id}: {e}")
        return None
