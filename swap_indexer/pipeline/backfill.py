"""Resumable historical indexing of vAMM swap logs."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from itertools import groupby

from swap_indexer.chain.interfaces import ChainLogSource, RawLog
from swap_indexer.chain.swap_decoder import decode_swap_log, log_position
from swap_indexer.database.interfaces import EventStore
from swap_indexer.errors import ChainError, StoreError, SwapDecodeError
from swap_indexer.markets.models import Market
from swap_indexer.models import SwapEvent
from swap_indexer.utils.config import BACKFILL_CHUNK_SIZE, GENESIS_BLOCK, SWAP_EVENT_SIGNATURE
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

_MALFORMED_POSITION = (1, 0, 0)


def _sort_key(log: RawLog) -> tuple[int, int, int]:
    # Malformed logs sort last and are rejected by the decoder
    try:
        block_number, log_index = log_position(log)
    except SwapDecodeError:
        return _MALFORMED_POSITION
    return (0, block_number, log_index)


def sort_logs(logs: Sequence[RawLog]) -> list[RawLog]:
    """Order logs by (blockNumber, logIndex) regardless of how they were fetched."""
    return sorted(logs, key=_sort_key)


def block_span(logs: Sequence[RawLog]) -> tuple[int, int] | None:
    """Lowest and highest block among logs that carry a position."""
    blocks = [key[1] for key in map(_sort_key, logs) if key != _MALFORMED_POSITION]
    return (min(blocks), max(blocks)) if blocks else None


async def apply_swap_logs(
    chain: ChainLogSource,
    store: EventStore,
    market: Market,
    logs: Sequence[RawLog],
    should_continue: Callable[[], bool] | None = None,
) -> int:
    """
    Decode and insert raw Swap logs in ascending block/log order.

    Each block's events are written in one transaction. Malformed logs are
    logged and skipped. ``should_continue`` is checked before every block so a
    stopping watcher writes nothing further.

    Returns:
        Number of newly inserted (non-duplicate) events

    Raises:
        ChainError: If a block timestamp cannot be read
        StoreError: If a write fails

        Either error carries the count of events committed before the failure
        in its ``inserted`` attribute.
    """
    inserted = 0
    for sort_group, block_logs in groupby(sort_logs(logs), key=lambda log: _sort_key(log)[:2]):
        if should_continue is not None and not should_continue():
            break
        block_logs = list(block_logs)
        if sort_group == _MALFORMED_POSITION[:2]:
            for log in block_logs:
                logger.warning(f"{market.name}: skipping log without block position: {log!r}")
            continue

        try:
            block_timestamp = await chain.get_block_timestamp(sort_group[1])
        except ChainError as e:
            e.inserted = inserted
            raise
        events: list[SwapEvent] = []
        for log in block_logs:
            try:
                events.append(decode_swap_log(log, market, block_timestamp))
            except SwapDecodeError as e:
                logger.warning(f"{market.name}: skipping malformed swap log in block {sort_group[1]}: {e}")

        if should_continue is not None and not should_continue():
            break
        try:
            count = await store.insert_events(events)
        except StoreError as e:
            e.inserted = inserted
            raise
        inserted += count
        for event in events:
            logger.debug(
                f"{market.name}: {'LONG' if event.is_long else 'SHORT'} "
                f"${event.notional_usd:.2f} @ ${event.avg_price:.2f} (tx {event.tx_hash})",
            )
    return inserted


class BackfillEngine:
    """Indexes a market's history from its cursor up to the chain head."""

    def __init__(
        self,
        chain: ChainLogSource,
        store: EventStore,
        chunk_size: int = BACKFILL_CHUNK_SIZE,
        genesis_block: int = GENESIS_BLOCK,
    ) -> None:
        """
        Initialize the backfill engine.

        Args:
            chain: Log source
            store: Event store
            chunk_size: Blocks per getLogs request
            genesis_block: First block for markets without a cursor or start_block
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.chain = chain
        self.store = store
        self.chunk_size = chunk_size
        self.genesis_block = genesis_block

    async def resolve_from_block(self, market: Market) -> int:
        last_block = await self.store.last_indexed_block(market.id)
        if last_block is not None:
            logger.info(f"{market.name}: resuming from block {last_block + 1}")
            return last_block + 1
        start = market.start_block if market.start_block is not None else self.genesis_block
        logger.info(f"{market.name}: starting from block {start}")
        return start

    async def run(self, market: Market, from_block: int | None = None, to_block: int | None = None) -> int:
        """
        Backfill ``[from_block, to_block]`` for one market.

        Args:
            market: Market to index
            from_block: First block; defaults to the cursor + 1 (or the genesis block)
            to_block: Last block; defaults to the current head

        Returns:
            Count of newly inserted events. On a chain or store failure the run
            stops and returns what was inserted so far; nothing is raised.
        """
        logger.info(f"Indexing historical events for {market.name}...")
        started = time.monotonic()
        inserted = 0

        try:
            if from_block is None:
                from_block = await self.resolve_from_block(market)
            if to_block is None:
                to_block = await self.chain.current_block_height()
        except (ChainError, StoreError) as e:
            logger.error(f"Error resolving backfill range for {market.name}: {e}")
            return 0

        for start in range(from_block, to_block + 1, self.chunk_size):
            end = min(start + self.chunk_size - 1, to_block)
            chunk_inserted = 0
            try:
                logs = await self.chain.get_logs(market.contract_address, SWAP_EVENT_SIGNATURE, start, end)
                chunk_inserted = await apply_swap_logs(self.chain, self.store, market, logs)
                await self.store.save_checkpoint(market.id, end)
            except (ChainError, StoreError) as e:
                logger.error(f"Error indexing historical events for {market.name} at blocks {start}-{end}: {e}")
                return inserted + chunk_inserted + e.inserted

            inserted += chunk_inserted
            if logs:
                logger.info(f"   {market.name}: indexed blocks {start}-{end}: {len(logs)} logs, {chunk_inserted} new")

        elapsed = time.monotonic() - started
        if elapsed > 0:
            logger.record_metric(f"{market.name}.backfill_events_per_sec", inserted / elapsed)
        logger.info(f"Indexed {inserted} historical events for {market.name}")
        return inserted
