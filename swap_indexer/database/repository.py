"""SQLite data access layer for swaps, snapshots and 24h stats."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from collections.abc import Callable, Sequence
from decimal import Decimal
from pathlib import Path
from typing import TypeVar

from beartype import beartype

from swap_indexer.database.connection import get_connection, initialize_database
from swap_indexer.errors import StoreClosedError, StoreError
from swap_indexer.models import InsertResult, MarketStats24h, PriceSnapshot, StatsHistory, SwapEvent
from swap_indexer.utils.config import DB_PATH
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

INSERT_SWAP_SQL = """
    INSERT OR IGNORE INTO swap_events (
        market_id, market_name, vamm_address, tx_hash, block_number, log_index, timestamp,
        trader_address, base_delta, quote_delta, avg_price, notional_usd, is_long
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _dec(value: Decimal) -> str:
    return format(value, "f")


def _opt_dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _swap_params(event: SwapEvent) -> tuple[object, ...]:
    return (
        event.market_id,
        event.market_name,
        event.contract_address.lower(),
        event.tx_hash,
        event.block_number,
        event.log_index,
        event.timestamp,
        event.trader_address.lower(),
        _dec(event.base_delta),
        _dec(event.quote_delta),
        _dec(event.avg_price),
        _dec(event.notional_usd),
        int(event.is_long),
    )


def _row_to_swap(row: sqlite3.Row) -> SwapEvent:
    return SwapEvent(
        market_id=row["market_id"],
        tx_hash=row["tx_hash"],
        block_number=row["block_number"],
        log_index=row["log_index"],
        timestamp=row["timestamp"],
        trader_address=row["trader_address"],
        base_delta=Decimal(row["base_delta"]),
        quote_delta=Decimal(row["quote_delta"]),
        avg_price=Decimal(row["avg_price"]),
        market_name=row["market_name"],
        contract_address=row["vamm_address"],
    )


def _row_to_snapshot(row: sqlite3.Row) -> PriceSnapshot:
    return PriceSnapshot(
        market_id=row["market_id"],
        mark_price=Decimal(row["mark_price"]),
        oracle_price=_opt_dec(row["oracle_price"]),
        block_number=row["block_number"],
        timestamp=row["timestamp"],
        market_name=row["market_name"],
        contract_address=row["vamm_address"],
    )


def _row_to_stats(row: sqlite3.Row) -> MarketStats24h:
    return MarketStats24h(
        market_id=row["market_id"],
        market_name=row["market_name"],
        current_price=Decimal(row["current_price"]),
        price_24h_ago=_opt_dec(row["price_24h_ago"]),
        change_24h_percent=_opt_dec(row["change_24h_percent"]),
        volume_24h_usd=Decimal(row["volume_24h_usd"]),
        trades_24h=row["trades_24h"],
        high_24h=Decimal(row["high_24h"]),
        low_24h=Decimal(row["low_24h"]),
        history=StatsHistory(row["history"]),
        last_updated=row["last_updated"],
    )


class SQLiteEventStore:
    """
    Event store on a single SQLite connection.

    All statements run in worker threads behind one lock, so the store can be
    shared by every watcher and timer task without external locking.
    """

    def __init__(self, db_path: Path = DB_PATH, read_only: bool = False) -> None:
        """
        Open (and, when writable, initialize) the database.

        Args:
            db_path: SQLite database file
            read_only: Reject every write; the file must already exist
        """
        self.db_path = db_path
        self.read_only = read_only
        if not read_only:
            initialize_database(db_path)
        self._conn: sqlite3.Connection | None = get_connection(db_path, read_only=read_only)
        self._lock = threading.Lock()

    def _execute(self, func: Callable[[sqlite3.Connection], T], write: bool = False) -> T:
        with self._lock:
            if self._conn is None:
                raise StoreClosedError(f"Store {self.db_path} is closed")
            if write and self.read_only:
                raise StoreError("Store is read-only")
            try:
                return func(self._conn)
            except sqlite3.Error as e:
                raise StoreError(f"SQLite error: {e}") from e

    async def _run(self, func: Callable[[sqlite3.Connection], T], write: bool = False) -> T:
        return await asyncio.to_thread(self._execute, func, write)

    @beartype
    async def insert_event(self, event: SwapEvent) -> InsertResult:
        """
        Insert a single swap. A repeated natural key is a no-op.

        Returns:
            INSERTED for a new row, DUPLICATE if the key already existed
        """

        def _insert(conn: sqlite3.Connection) -> InsertResult:
            with conn:
                cursor = conn.execute(INSERT_SWAP_SQL, _swap_params(event))
            return InsertResult.INSERTED if cursor.rowcount == 1 else InsertResult.DUPLICATE

        return await self._run(_insert, write=True)

    @beartype
    async def insert_events(self, events: Sequence[SwapEvent]) -> int:
        """
        Insert several swaps in one transaction.

        Returns:
            Number of newly inserted (non-duplicate) rows
        """
        if not events:
            return 0

        def _insert_many(conn: sqlite3.Connection) -> int:
            before = conn.total_changes
            with conn:
                conn.executemany(INSERT_SWAP_SQL, [_swap_params(event) for event in events])
            return conn.total_changes - before

        return await self._run(_insert_many, write=True)

    @beartype
    async def last_indexed_block(self, market_id: str) -> int | None:
        """Highest block already ingested for a market (events or explicit checkpoint)."""

        def _query(conn: sqlite3.Connection) -> int | None:
            row = conn.execute(
                """
                SELECT MAX(block) FROM (
                    SELECT MAX(block_number) AS block FROM swap_events WHERE market_id = ?
                    UNION ALL
                    SELECT last_block AS block FROM indexer_cursors WHERE market_id = ?
                )
                """,
                (market_id, market_id),
            ).fetchone()
            return row[0] if row and row[0] is not None else None

        return await self._run(_query)

    @beartype
    async def save_checkpoint(self, market_id: str, block_number: int) -> None:
        """Advance the explicit cursor; never moves it backwards."""

        def _save(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    """
                    INSERT INTO indexer_cursors (market_id, last_block) VALUES (?, ?)
                    ON CONFLICT(market_id) DO UPDATE SET
                        last_block = MAX(last_block, excluded.last_block),
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (market_id, block_number),
                )

        await self._run(_save, write=True)

    @beartype
    async def events_in_window(self, market_id: str, since_timestamp: int) -> list[SwapEvent]:
        """Swaps with ``timestamp >= since_timestamp`` in block order."""

        def _query(conn: sqlite3.Connection) -> list[SwapEvent]:
            rows = conn.execute(
                """
                SELECT * FROM swap_events
                WHERE market_id = ? AND timestamp >= ?
                ORDER BY block_number ASC, log_index ASC
                """,
                (market_id, since_timestamp),
            ).fetchall()
            return [_row_to_swap(row) for row in rows]

        return await self._run(_query)

    @beartype
    async def get_events(self, market_id: str, limit: int | None = None) -> list[SwapEvent]:
        """All stored swaps for a market in block order."""

        def _query(conn: sqlite3.Connection) -> list[SwapEvent]:
            query = "SELECT * FROM swap_events WHERE market_id = ? ORDER BY block_number ASC, log_index ASC"
            params: tuple[object, ...] = (market_id,)
            if limit:
                query += " LIMIT ?"
                params = (market_id, limit)
            return [_row_to_swap(row) for row in conn.execute(query, params).fetchall()]

        return await self._run(_query)

    @beartype
    async def get_event_count(self, market_id: str | None = None) -> int:
        def _query(conn: sqlite3.Connection) -> int:
            if market_id:
                row = conn.execute("SELECT COUNT(*) FROM swap_events WHERE market_id = ?", (market_id,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM swap_events").fetchone()
            return row[0] if row else 0

        return await self._run(_query)

    @beartype
    async def insert_snapshot(self, snapshot: PriceSnapshot) -> None:
        def _insert(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    """
                    INSERT INTO price_snapshots (
                        market_id, market_name, vamm_address, mark_price, oracle_price, block_number, timestamp
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        snapshot.market_id,
                        snapshot.market_name,
                        snapshot.contract_address.lower(),
                        _dec(snapshot.mark_price),
                        None if snapshot.oracle_price is None else _dec(snapshot.oracle_price),
                        snapshot.block_number,
                        snapshot.timestamp,
                    ),
                )

        await self._run(_insert, write=True)

    @beartype
    async def latest_snapshot(self, market_id: str, at_or_before: int | None = None) -> PriceSnapshot | None:
        """Most recent snapshot, optionally restricted to ``timestamp <= at_or_before``."""

        def _query(conn: sqlite3.Connection) -> PriceSnapshot | None:
            if at_or_before is None:
                row = conn.execute(
                    "SELECT * FROM price_snapshots WHERE market_id = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
                    (market_id,),
                ).fetchone()
            else:
                row = conn.execute(
                    """
                    SELECT * FROM price_snapshots
                    WHERE market_id = ? AND timestamp <= ?
                    ORDER BY timestamp DESC, id DESC LIMIT 1
                    """,
                    (market_id, at_or_before),
                ).fetchone()
            return _row_to_snapshot(row) if row else None

        return await self._run(_query)

    @beartype
    async def get_snapshot_count(self, market_id: str) -> int:
        def _query(conn: sqlite3.Connection) -> int:
            row = conn.execute("SELECT COUNT(*) FROM price_snapshots WHERE market_id = ?", (market_id,)).fetchone()
            return row[0] if row else 0

        return await self._run(_query)

    @beartype
    async def upsert_stats(self, stats: MarketStats24h) -> None:
        def _upsert(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    """
                    INSERT INTO market_stats_24h (
                        market_id, market_name, current_price, price_24h_ago, change_24h_percent,
                        volume_24h_usd, trades_24h, high_24h, low_24h, history, last_updated
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(market_id) DO UPDATE SET
                        market_name = excluded.market_name,
                        current_price = excluded.current_price,
                        price_24h_ago = excluded.price_24h_ago,
                        change_24h_percent = excluded.change_24h_percent,
                        volume_24h_usd = excluded.volume_24h_usd,
                        trades_24h = excluded.trades_24h,
                        high_24h = excluded.high_24h,
                        low_24h = excluded.low_24h,
                        history = excluded.history,
                        last_updated = excluded.last_updated
                    """,
                    (
                        stats.market_id,
                        stats.market_name,
                        _dec(stats.current_price),
                        None if stats.price_24h_ago is None else _dec(stats.price_24h_ago),
                        None if stats.change_24h_percent is None else _dec(stats.change_24h_percent),
                        _dec(stats.volume_24h_usd),
                        stats.trades_24h,
                        _dec(stats.high_24h),
                        _dec(stats.low_24h),
                        stats.history.value,
                        stats.last_updated,
                    ),
                )

        await self._run(_upsert, write=True)

    @beartype
    async def get_24h_stats(self, market_id: str) -> MarketStats24h | None:
        """Cached 24h stats row for a market, or None if never computed."""

        def _query(conn: sqlite3.Connection) -> MarketStats24h | None:
            row = conn.execute("SELECT * FROM market_stats_24h WHERE market_id = ?", (market_id,)).fetchone()
            return _row_to_stats(row) if row else None

        return await self._run(_query)

    async def close(self) -> None:
        """Close the connection. Later calls raise StoreClosedError; closing twice is a no-op."""

        def _close() -> None:
            with self._lock:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None
                    logger.debug(f"Closed database {self.db_path}")

        await asyncio.to_thread(_close)
