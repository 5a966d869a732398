"""Process lifecycle: backfill, watchers, periodic snapshot and stats jobs."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from swap_indexer.chain.interfaces import ChainLogSource
from swap_indexer.database.interfaces import EventStore
from swap_indexer.markets.models import Market
from swap_indexer.markets.registry import MarketRegistry
from swap_indexer.pipeline.backfill import BackfillEngine
from swap_indexer.pipeline.snapshots import SnapshotScheduler
from swap_indexer.pipeline.stats import StatsAggregator
from swap_indexer.pipeline.watcher import RealtimeWatcher, WatchHandle
from swap_indexer.utils.config import (
    INDEX_HISTORICAL,
    SNAPSHOT_INTERVAL_MS,
    STATS_INTERVAL_MS,
    WATCH_EVENTS,
)
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

ShutdownFn = Callable[[], Awaitable[None]]


@dataclass
class OrchestratorOptions:
    """Runtime switches for one indexer run."""

    backfill_on_historical: bool = INDEX_HISTORICAL
    watch_live: bool = WATCH_EVENTS
    snapshot_interval_ms: int = SNAPSHOT_INTERVAL_MS
    stats_interval_ms: int = STATS_INTERVAL_MS
    # Storage write credentials; None starts the indexer read-only
    write_credentials: str | None = None


class Orchestrator:
    """
    Wires the pipeline together for every active market.

    The store and chain source are injected; the orchestrator closes the store
    on shutdown when ``owns_store`` is set.
    """

    def __init__(
        self,
        store: EventStore,
        chain: ChainLogSource,
        registry: MarketRegistry | None = None,
        clock: Callable[[], float] = time.time,
        owns_store: bool = True,
    ) -> None:
        self.store = store
        self.chain = chain
        self.registry = registry or MarketRegistry()
        self.owns_store = owns_store
        self.backfill = BackfillEngine(chain, store)
        self.snapshots = SnapshotScheduler(chain, store, clock=clock)
        self.stats = StatsAggregator(store, clock=clock)
        self.watcher = RealtimeWatcher(chain, store, on_batch=self._refresh_market)
        self.handles: list[WatchHandle] = []
        self.scheduler: AsyncIOScheduler | None = None
        self.read_only = False
        self._shutdown_lock = asyncio.Lock()
        self._shut_down = False

    def _running(self) -> bool:
        return not self._shut_down

    async def _refresh_market(self, market: Market) -> None:
        if not self._running():
            return
        await self.snapshots.snapshot(market)
        if self._running():
            await self.stats.refresh(market)

    async def _guard(self, step: str, market: Market, action: Callable[[], Awaitable[object]]) -> None:
        """Run one startup step for one market; failures are logged, never propagated."""
        try:
            await action()
        except Exception:
            logger.exception(f"{step} failed for {market.name}; continuing with remaining markets")

    async def _snapshot_tick(self) -> None:
        await self.snapshots.snapshot_all(self.registry.list_active_markets(), should_continue=self._running)

    async def _stats_tick(self) -> None:
        await self.stats.refresh_all(self.registry.list_active_markets(), should_continue=self._running)

    def _start_scheduler(self, options: OrchestratorOptions) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone="UTC",
            job_defaults={
                # A tick still running when the next one is due is skipped, not stacked
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": None,
            },
        )
        scheduler.add_job(
            self._snapshot_tick,
            trigger=IntervalTrigger(seconds=options.snapshot_interval_ms / 1000),
            id="price_snapshots",
            name="Price snapshots",
        )
        scheduler.add_job(
            self._stats_tick,
            trigger=IntervalTrigger(seconds=options.stats_interval_ms / 1000),
            id="market_stats",
            name="24h market stats",
        )
        scheduler.start()
        logger.info(
            f"Scheduled snapshots every {options.snapshot_interval_ms / 1000:g}s, "
            f"stats every {options.stats_interval_ms / 1000:g}s",
        )
        return scheduler

    async def start(self, options: OrchestratorOptions | None = None) -> ShutdownFn | None:
        """
        Start indexing.

        Returns:
            The shutdown coroutine function, or None when started read-only
            (no write credentials), in which case nothing is written
        """
        options = options or OrchestratorOptions()
        if not options.write_credentials:
            logger.warning("No write credentials provided; indexer running in read-only mode")
            self.read_only = True
            return None

        logger.info("Starting event indexer...")
        for market in self.registry.list_all():
            if not market.active:
                logger.info(f"Skipping deprecated market: {market.name}")
                continue

            with logger.timed(f"{market.name}.startup"):
                if options.backfill_on_historical:
                    await self._guard("Backfill", market, lambda market=market: self.backfill.run(market))

                if options.watch_live:
                    try:
                        self.handles.append(self.watcher.start(market))
                    except Exception:
                        logger.exception(f"Watcher failed to start for {market.name}")

                await self._guard("Initial snapshot", market, lambda market=market: self.snapshots.snapshot(market))
                await self._guard("Initial stats", market, lambda market=market: self.stats.refresh(market))

        self.scheduler = self._start_scheduler(options)
        logger.info("Indexer started successfully")
        return self.shutdown

    async def shutdown(self) -> None:
        """Cancel every watcher and both periodic jobs, then close the store. Idempotent."""
        async with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

            logger.info("Stopping indexer...")
            if self.scheduler is not None:
                self.scheduler.shutdown(wait=False)
                self.scheduler = None

            await asyncio.gather(*(self.watcher.stop(handle) for handle in self.handles))
            self.handles.clear()

            await self.snapshots.wait_idle()
            await self.stats.wait_idle()

            if self.owns_store:
                await self.store.close()
            logger.log_summary()
            logger.info("Indexer stopped")
