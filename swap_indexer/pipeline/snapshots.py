"""Price snapshot recording."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable

from swap_indexer.chain.interfaces import ChainLogSource
from swap_indexer.database.interfaces import EventStore
from swap_indexer.errors import ChainError, StoreError
from swap_indexer.markets.models import Market
from swap_indexer.models import PriceSnapshot
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)


class SnapshotScheduler:
    """
    Records mark + oracle price per market.

    A snapshot is skipped entirely when the mark price is unavailable. Runs for
    the same market never overlap: a trigger arriving while one is in flight is
    dropped.
    """

    def __init__(
        self,
        chain: ChainLogSource,
        store: EventStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chain = chain
        self.store = store
        self.clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def snapshot(self, market: Market) -> PriceSnapshot | None:
        """Take one snapshot. Returns the stored snapshot, or None if skipped or failed."""
        lock = self._locks[market.id]
        if lock.locked():
            logger.debug(f"Snapshot for {market.name} already running; skipping")
            return None

        async with lock:
            try:
                mark_price = await self.chain.read_mark_price(market.contract_address)
                if mark_price is None:
                    logger.warning(f"Mark price unavailable for {market.name}; snapshot skipped")
                    return None
                oracle_price = await self.chain.read_reference_price()
                block_number = await self.chain.current_block_height()

                snapshot = PriceSnapshot(
                    market_id=market.id,
                    mark_price=mark_price,
                    oracle_price=oracle_price,
                    block_number=block_number,
                    timestamp=int(self.clock()),
                    market_name=market.name,
                    contract_address=market.contract_address.lower(),
                )
                await self.store.insert_snapshot(snapshot)
            except (ChainError, StoreError) as e:
                logger.error(f"Error taking price snapshot for {market.name}: {e}")
                return None

        oracle_text = "n/a" if oracle_price is None else f"${oracle_price:.2f}"
        logger.info(f"{market.name}: mark ${mark_price:.2f}, oracle {oracle_text} @ block {block_number}")
        return snapshot

    async def snapshot_all(
        self,
        markets: Iterable[Market],
        should_continue: Callable[[], bool] | None = None,
    ) -> int:
        """Snapshot every market in turn; one market's failure does not affect the rest."""
        logger.info("Taking price snapshots...")
        taken = 0
        for market in markets:
            if should_continue is not None and not should_continue():
                break
            if await self.snapshot(market) is not None:
                taken += 1
        return taken

    async def wait_idle(self) -> None:
        """Wait until no snapshot is in flight."""
        for lock in list(self._locks.values()):
            async with lock:
                pass
