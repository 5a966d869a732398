"""Market registry module."""

from __future__ import annotations

from swap_indexer.markets.models import Market
from swap_indexer.markets.registry import DEFAULT_MARKETS, MarketRegistry, market_id_for

__all__ = ["DEFAULT_MARKETS", "Market", "MarketRegistry", "market_id_for"]
