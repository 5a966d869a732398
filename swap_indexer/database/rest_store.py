"""PostgREST (Supabase) event store over HTTP."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from beartype import beartype
from httpx import AsyncClient, HTTPError, Response

from swap_indexer.errors import StoreClosedError, StoreError
from swap_indexer.models import InsertResult, MarketStats24h, PriceSnapshot, StatsHistory, SwapEvent
from swap_indexer.utils.config import STORE_HTTP_TIMEOUT
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"
SWAP_NATURAL_KEY = "market_id,tx_hash,block_number,log_index"
PAGE_SIZE = 1000


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else format(value, "f")


def _to_dec(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _swap_row(event: SwapEvent) -> dict[str, object]:
    return {
        "market_id": event.market_id,
        "market_name": event.market_name,
        "vamm_address": event.contract_address.lower(),
        "tx_hash": event.tx_hash,
        "block_number": event.block_number,
        "log_index": event.log_index,
        "timestamp": event.timestamp,
        "trader_address": event.trader_address.lower(),
        "base_delta": _dec(event.base_delta),
        "quote_delta": _dec(event.quote_delta),
        "avg_price": _dec(event.avg_price),
        "notional_usd": _dec(event.notional_usd),
        "is_long": event.is_long,
    }


def _swap_from_row(row: Mapping[str, Any]) -> SwapEvent:
    return SwapEvent(
        market_id=row["market_id"],
        tx_hash=row["tx_hash"],
        block_number=int(row["block_number"]),
        log_index=int(row["log_index"]),
        timestamp=int(row["timestamp"]),
        trader_address=row["trader_address"],
        base_delta=Decimal(str(row["base_delta"])),
        quote_delta=Decimal(str(row["quote_delta"])),
        avg_price=Decimal(str(row["avg_price"])),
        market_name=row.get("market_name") or "",
        contract_address=row.get("vamm_address") or "",
    )


def _snapshot_from_row(row: Mapping[str, Any]) -> PriceSnapshot:
    return PriceSnapshot(
        market_id=row["market_id"],
        mark_price=Decimal(str(row["mark_price"])),
        oracle_price=_to_dec(row.get("oracle_price")),
        block_number=int(row["block_number"]),
        timestamp=int(row["timestamp"]),
        market_name=row.get("market_name") or "",
        contract_address=row.get("vamm_address") or "",
    )


def _stats_from_row(row: Mapping[str, Any]) -> MarketStats24h:
    return MarketStats24h(
        market_id=row["market_id"],
        market_name=row.get("market_name") or "",
        current_price=Decimal(str(row["current_price"])),
        price_24h_ago=_to_dec(row.get("price_24h_ago")),
        change_24h_percent=_to_dec(row.get("change_24h_percent")),
        volume_24h_usd=Decimal(str(row["volume_24h_usd"])),
        trades_24h=int(row["trades_24h"]),
        high_24h=Decimal(str(row["high_24h"])),
        low_24h=Decimal(str(row["low_24h"])),
        history=StatsHistory(row.get("history") or StatsHistory.COMPLETE.value),
        last_updated=int(row["last_updated"]),
    )


class PostgRESTEventStore:
    """
    Event store backed by a PostgREST endpoint such as Supabase.

    Duplicate swaps are filtered server-side with ``resolution=ignore-duplicates``
    on the natural key; a unique-violation response is also treated as a duplicate.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        read_only: bool | None = None,
        client: AsyncClient | None = None,
        timeout: float = STORE_HTTP_TIMEOUT,
    ) -> None:
        """
        Initialize the store.

        Args:
            base_url: Project URL, e.g. https://xyz.supabase.co
            api_key: Service key for writes (or an anon key for reads)
            read_only: Reject writes; defaults to True when no api_key is given
            client: Optional preconfigured httpx client (closed with the store)
            timeout: Request timeout in seconds
        """
        if not base_url:
            raise ValueError("PostgREST base URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.read_only = (not api_key) if read_only is None else read_only
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.client: AsyncClient | None = client or AsyncClient(timeout=timeout)
        self.client.headers.update(headers)
        self.rest_url = f"{self.base_url}/rest/v1"

    async def _request(
        self,
        method: str,
        table: str,
        params: Mapping[str, str] | None = None,
        json: object = None,
        prefer: str | None = None,
        write: bool = False,
    ) -> Response:
        if self.client is None:
            raise StoreClosedError("PostgREST store is closed")
        if write and self.read_only:
            raise StoreError("Store is read-only")

        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self.client.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except HTTPError as e:
            raise StoreError(f"PostgREST request to {table} failed: {e}") from e
        return response

    @staticmethod
    def _is_unique_violation(response: Response) -> bool:
        if response.status_code != 409:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("code") == UNIQUE_VIOLATION

    @staticmethod
    def _raise_for_status(response: Response, table: str) -> None:
        try:
            response.raise_for_status()
        except HTTPError as e:
            raise StoreError(f"PostgREST {table} error {response.status_code}: {response.text}") from e

    async def _select(self, table: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        response = await self._request("GET", table, params=params)
        self._raise_for_status(response, table)
        return list(response.json())

    async def _insert_swaps(self, events: Sequence[SwapEvent]) -> int:
        response = await self._request(
            "POST",
            "swap_events",
            params={"on_conflict": SWAP_NATURAL_KEY},
            json=[_swap_row(event) for event in events],
            prefer="resolution=ignore-duplicates,return=representation",
            write=True,
        )
        if self._is_unique_violation(response):
            if len(events) == 1:
                return 0
            # The batch was rolled back as a whole; retry row by row
            logger.debug(f"Unique violation in a batch of {len(events)} swaps; inserting one at a time")
            inserted = 0
            for event in events:
                inserted += await self._insert_swaps([event])
            return inserted
        self._raise_for_status(response, "swap_events")
        return len(response.json())

    @beartype
    async def insert_event(self, event: SwapEvent) -> InsertResult:
        inserted = await self._insert_swaps([event])
        return InsertResult.INSERTED if inserted else InsertResult.DUPLICATE

    @beartype
    async def insert_events(self, events: Sequence[SwapEvent]) -> int:
        if not events:
            return 0
        return await self._insert_swaps(events)

    @beartype
    async def last_indexed_block(self, market_id: str) -> int | None:
        rows = await self._select(
            "swap_events",
            {
                "select": "block_number",
                "market_id": f"eq.{market_id}",
                "order": "block_number.desc",
                "limit": "1",
            },
        )
        cursors = await self._select(
            "indexer_cursors",
            {"select": "last_block", "market_id": f"eq.{market_id}", "limit": "1"},
        )
        candidates = [int(row["block_number"]) for row in rows] + [int(row["last_block"]) for row in cursors]
        return max(candidates) if candidates else None

    @beartype
    async def save_checkpoint(self, market_id: str, block_number: int) -> None:
        cursors = await self._select(
            "indexer_cursors",
            {"select": "last_block", "market_id": f"eq.{market_id}", "limit": "1"},
        )
        if cursors and int(cursors[0]["last_block"]) >= block_number:
            return
        response = await self._request(
            "POST",
            "indexer_cursors",
            params={"on_conflict": "market_id"},
            json={"market_id": market_id, "last_block": block_number},
            prefer="resolution=merge-duplicates,return=minimal",
            write=True,
        )
        self._raise_for_status(response, "indexer_cursors")

    @beartype
    async def events_in_window(self, market_id: str, since_timestamp: int) -> list[SwapEvent]:
        """Swaps since ``since_timestamp`` in block order, paged to stay under the server row cap."""
        events: list[SwapEvent] = []
        offset = 0
        while True:
            rows = await self._select(
                "swap_events",
                {
                    "market_id": f"eq.{market_id}",
                    "timestamp": f"gte.{since_timestamp}",
                    "order": "block_number.asc,log_index.asc",
                    "limit": str(PAGE_SIZE),
                    "offset": str(offset),
                },
            )
            events.extend(_swap_from_row(row) for row in rows)
            if len(rows) < PAGE_SIZE:
                return events
            offset += PAGE_SIZE

    @beartype
    async def insert_snapshot(self, snapshot: PriceSnapshot) -> None:
        response = await self._request(
            "POST",
            "price_snapshots",
            json={
                "market_id": snapshot.market_id,
                "market_name": snapshot.market_name,
                "vamm_address": snapshot.contract_address.lower(),
                "mark_price": _dec(snapshot.mark_price),
                "oracle_price": _dec(snapshot.oracle_price),
                "block_number": snapshot.block_number,
                "timestamp": snapshot.timestamp,
            },
            prefer="return=minimal",
            write=True,
        )
        self._raise_for_status(response, "price_snapshots")

    @beartype
    async def latest_snapshot(self, market_id: str, at_or_before: int | None = None) -> PriceSnapshot | None:
        params = {"market_id": f"eq.{market_id}", "order": "timestamp.desc", "limit": "1"}
        if at_or_before is not None:
            params["timestamp"] = f"lte.{at_or_before}"
        rows = await self._select("price_snapshots", params)
        return _snapshot_from_row(rows[0]) if rows else None

    @beartype
    async def upsert_stats(self, stats: MarketStats24h) -> None:
        response = await self._request(
            "POST",
            "market_stats_24h",
            params={"on_conflict": "market_id"},
            json={
                "market_id": stats.market_id,
                "market_name": stats.market_name,
                "current_price": _dec(stats.current_price),
                "price_24h_ago": _dec(stats.price_24h_ago),
                "change_24h_percent": _dec(stats.change_24h_percent),
                "volume_24h_usd": _dec(stats.volume_24h_usd),
                "trades_24h": stats.trades_24h,
                "high_24h": _dec(stats.high_24h),
                "low_24h": _dec(stats.low_24h),
                "history": stats.history.value,
                "last_updated": stats.last_updated,
            },
            prefer="resolution=merge-duplicates,return=minimal",
            write=True,
        )
        self._raise_for_status(response, "market_stats_24h")

    @beartype
    async def get_24h_stats(self, market_id: str) -> MarketStats24h | None:
        rows = await self._select("market_stats_24h", {"market_id": f"eq.{market_id}", "limit": "1"})
        return _stats_from_row(rows[0]) if rows else None

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
