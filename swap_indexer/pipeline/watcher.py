"""Real-time watchers: one live log subscription task per market."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from swap_indexer.chain.interfaces import ChainLogSource, LogStream
from swap_indexer.database.interfaces import EventStore
from swap_indexer.errors import ChainError, StoreError
from swap_indexer.markets.models import Market
from swap_indexer.pipeline.backfill import apply_swap_logs, block_span
from swap_indexer.utils.config import SWAP_EVENT_SIGNATURE, WATCHER_STOP_TIMEOUT
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

BatchCallback = Callable[[Market], Awaitable[None]]

RECONNECT_DELAY = 5.0


class WatchHandle:
    """Cancellation handle for one market's watcher task."""

    def __init__(self, market: Market, stop_timeout: float) -> None:
        self.market = market
        self.stop_timeout = stop_timeout
        self.task: asyncio.Task[None] | None = None
        self.subscription: LogStream | None = None
        # First block not yet known to be applied; a resubscribe never starts later
        self.resume_block: int | None = None
        self._stopped = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def wait_stopped(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def cancel(self) -> None:
        """
        Stop the watcher and release its subscription.

        When this returns the task has finished, so no further writes happen.
        Safe to call more than once.
        """
        self._stopped.set()
        if self.subscription is not None:
            await self.subscription.close()
        if self.task is None or self.task.done():
            return

        try:
            await asyncio.wait_for(asyncio.shield(self.task), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Watcher for {self.market.name} did not stop in {self.stop_timeout}s; cancelling")
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass


class RealtimeWatcher:
    """
    Applies newly arriving swap logs through the same idempotent path as backfill.

    Each watcher resumes its subscription from the market's cursor, or from the
    first block of a batch that failed to apply. A batch delivered twice (for
    instance after a reconnect) is stored once and a failed one is read again.
    After every applied batch ``on_batch`` runs, which refreshes the market's
    snapshot and stats.
    """

    def __init__(
        self,
        chain: ChainLogSource,
        store: EventStore,
        on_batch: BatchCallback | None = None,
        stop_timeout: float = WATCHER_STOP_TIMEOUT,
        reconnect_delay: float = RECONNECT_DELAY,
    ) -> None:
        self.chain = chain
        self.store = store
        self.on_batch = on_batch
        self.stop_timeout = stop_timeout
        self.reconnect_delay = reconnect_delay

    def start(self, market: Market) -> WatchHandle:
        """Start watching a market. Must be called from a running event loop."""
        logger.info(f"Watching {market.name} for new swaps...")
        handle = WatchHandle(market, self.stop_timeout)
        handle.task = asyncio.create_task(self._run(handle), name=f"watch-{market.name}")
        return handle

    async def stop(self, handle: WatchHandle) -> None:
        await handle.cancel()

    async def _subscribe(self, handle: WatchHandle) -> LogStream:
        market = handle.market
        last_block = await self.store.last_indexed_block(market.id)
        if last_block is not None:
            from_block = last_block + 1
            if handle.resume_block is not None:
                from_block = min(from_block, handle.resume_block)
        else:
            # No cursor: pin the head once so reconnects re-read from there
            if handle.resume_block is None:
                handle.resume_block = await self.chain.current_block_height() + 1
            from_block = handle.resume_block
        return self.chain.subscribe(market.contract_address, SWAP_EVENT_SIGNATURE, from_block=from_block)

    async def _run(self, handle: WatchHandle) -> None:
        market = handle.market
        while not handle.stopped:
            try:
                handle.subscription = await self._subscribe(handle)
                if handle.stopped:
                    break
                async for logs in handle.subscription:
                    if handle.stopped:
                        break
                    span = block_span(logs)
                    if span is not None and (handle.resume_block is None or span[0] < handle.resume_block):
                        handle.resume_block = span[0]
                    inserted = await apply_swap_logs(
                        self.chain,
                        self.store,
                        market,
                        logs,
                        should_continue=lambda: not handle.stopped,
                    )
                    if handle.stopped:
                        break
                    if span is not None:
                        handle.resume_block = span[1] + 1
                    logger.info(f"{market.name}: {len(logs)} new logs, {inserted} stored")
                    if self.on_batch is not None:
                        await self.on_batch(market)
            except (ChainError, StoreError) as e:
                logger.warning(f"Watcher for {market.name} failed: {e}; resubscribing")
            except Exception:
                logger.exception(f"Unexpected watcher error for {market.name}; resubscribing")
            finally:
                if handle.subscription is not None:
                    await handle.subscription.close()

            if handle.stopped or await handle.wait_stopped(self.reconnect_delay):
                break

        logger.info(f"Stopped watching {market.name}")
