"""Storage contract shared by the SQLite and PostgREST event stores."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from swap_indexer.models import InsertResult, MarketStats24h, PriceSnapshot, SwapEvent


class EventStore(Protocol):
    """
    Append-only swap/snapshot storage plus the 24h stats read model.

    Implementations must be safe to call concurrently from several tasks.
    Duplicate swap inserts are reported as ``InsertResult.DUPLICATE``, never raised.
    """

    read_only: bool

    async def insert_event(self, event: SwapEvent) -> InsertResult: ...

    async def insert_events(self, events: Sequence[SwapEvent]) -> int: ...

    async def last_indexed_block(self, market_id: str) -> int | None: ...

    async def save_checkpoint(self, market_id: str, block_number: int) -> None: ...

    async def events_in_window(self, market_id: str, since_timestamp: int) -> list[SwapEvent]: ...

    async def insert_snapshot(self, snapshot: PriceSnapshot) -> None: ...

    async def latest_snapshot(self, market_id: str, at_or_before: int | None = None) -> PriceSnapshot | None: ...

    async def upsert_stats(self, stats: MarketStats24h) -> None: ...

    async def get_24h_stats(self, market_id: str) -> MarketStats24h | None: ...

    async def close(self) -> None: ...
