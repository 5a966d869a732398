"""Data models for swap events and the read models derived from them."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class InsertResult(str, Enum):
    """Outcome of an idempotent event insert."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class StatsHistory(str, Enum):
    """Whether a stats row had a real snapshot from 24h ago to compare against."""

    COMPLETE = "complete"
    INSUFFICIENT = "insufficient"


@dataclass(frozen=True)
class SwapEvent:
    """A single decoded vAMM swap. Append-only; never updated."""

    market_id: str
    tx_hash: str
    block_number: int
    log_index: int
    timestamp: int
    trader_address: str
    base_delta: Decimal
    quote_delta: Decimal
    avg_price: Decimal
    market_name: str = ""
    contract_address: str = ""

    @property
    def notional_usd(self) -> Decimal:
        return abs(self.quote_delta)

    @property
    def is_long(self) -> bool:
        return self.base_delta > 0

    @property
    def natural_key(self) -> tuple[str, str, int, int]:
        """Uniqueness key; a second insert with the same key is a no-op."""
        return (self.market_id, self.tx_hash, self.block_number, self.log_index)

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class PriceSnapshot:
    """Mark price (and oracle price when the feed answered) at a point in time."""

    market_id: str
    mark_price: Decimal
    oracle_price: Decimal | None
    block_number: int
    timestamp: int
    market_name: str = ""
    contract_address: str = ""


@dataclass(frozen=True)
class MarketStats24h:
    """
    Rolling 24h statistics for one market.

    ``price_24h_ago`` and ``change_24h_percent`` are None when no snapshot
    exists at or before the start of the window; ``history`` says so explicitly.
    """

    market_id: str
    current_price: Decimal
    price_24h_ago: Decimal | None
    change_24h_percent: Decimal | None
    volume_24h_usd: Decimal
    trades_24h: int
    high_24h: Decimal
    low_24h: Decimal
    last_updated: int
    history: StatsHistory = StatsHistory.COMPLETE
    market_name: str = ""
