"""Database schema definitions for swaps, price snapshots and 24h stats."""

from __future__ import annotations

# Decimal amounts are stored as TEXT so no precision is lost; aggregation
# happens in Python. Timestamps are unix seconds.
SWAP_EVENTS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS swap_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    market_id TEXT NOT NULL,
    market_name TEXT NOT NULL DEFAULT '',
    vamm_address TEXT NOT NULL DEFAULT '',
    tx_hash TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    trader_address TEXT NOT NULL,
    base_delta TEXT NOT NULL,
    quote_delta TEXT NOT NULL,
    avg_price TEXT NOT NULL,
    notional_usd TEXT NOT NULL,
    is_long INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (market_id, tx_hash, block_number, log_index)
)
"""

PRICE_SNAPSHOTS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS price_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    market_id TEXT NOT NULL,
    market_name TEXT NOT NULL DEFAULT '',
    vamm_address TEXT NOT NULL DEFAULT '',
    mark_price TEXT NOT NULL,
    oracle_price TEXT,
    block_number INTEGER NOT NULL,
    timestamp INTEGER NOT NULL
)
"""

MARKET_STATS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS market_stats_24h (
    market_id TEXT PRIMARY KEY,
    market_name TEXT NOT NULL DEFAULT '',
    current_price TEXT NOT NULL,
    price_24h_ago TEXT,
    change_24h_percent TEXT,
    volume_24h_usd TEXT NOT NULL,
    trades_24h INTEGER NOT NULL,
    high_24h TEXT NOT NULL,
    low_24h TEXT NOT NULL,
    history TEXT NOT NULL,
    last_updated INTEGER NOT NULL
)
"""

# Explicit resume point for markets whose scanned ranges held no events
INDEXER_CURSORS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS indexer_cursors (
    market_id TEXT PRIMARY KEY,
    last_block INTEGER NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

TABLE_SCHEMAS = [
    SWAP_EVENTS_TABLE_SCHEMA,
    PRICE_SNAPSHOTS_TABLE_SCHEMA,
    MARKET_STATS_TABLE_SCHEMA,
    INDEXER_CURSORS_TABLE_SCHEMA,
]

# Index for faster queries
INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_swap_market_block ON swap_events(market_id, block_number)",
    "CREATE INDEX IF NOT EXISTS idx_swap_market_timestamp ON swap_events(market_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_snapshot_market_timestamp ON price_snapshots(market_id, timestamp)",
]
