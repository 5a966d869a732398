"""Shared fakes and fixtures for indexer tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path

import pytest
from eth_abi import encode

from swap_indexer.chain.swap_decoder import SWAP_TOPIC
from swap_indexer.database.repository import SQLiteEventStore
from swap_indexer.errors import ChainError
from swap_indexer.markets.models import Market
from swap_indexer.models import SwapEvent

SCALE = 10**18
BLOCK_TIME = 12
GENESIS_TIMESTAMP = 1_700_000_000

MARKET_A = Market(
    id="0x" + "aa" * 32,
    name="H100-PERP",
    contract_address="0x81C40Fb63dFBa1C7d6C32b7a23fc25bd2E6bE3Cc",
    start_block=1,
)
MARKET_B = Market(
    id="0x" + "bb" * 32,
    name="T4-PERP",
    contract_address="0x910C730dBEd5384fbF83bf1F387609bf83E8ffDd",
    start_block=1,
)
MARKET_OLD = Market(
    id="0x" + "cc" * 32,
    name="ETH-PERP",
    contract_address="0xd5d946Fc7c41C1AD7C0aC1BdfDCE53FE0a860204",
    active=False,
    start_block=1,
)

TRADER = "0x1111111111111111111111111111111111111111"


def make_swap_log(
    block_number: int,
    log_index: int = 0,
    tx_hash: str | None = None,
    sender: str = TRADER,
    base_delta: str = "1",
    quote_delta: str = "-100",
    avg_price: str = "100",
) -> dict[str, object]:
    """Build a raw Swap log the way eth_getLogs returns it."""
    data = encode(
        ["int256", "int256", "uint256"],
        [int(Decimal(base_delta) * SCALE), int(Decimal(quote_delta) * SCALE), int(Decimal(avg_price) * SCALE)],
    )
    return {
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": tx_hash or "0x" + f"{block_number:032x}{log_index:032x}",
        "topics": [SWAP_TOPIC, "0x" + "0" * 24 + sender[2:]],
        "data": "0x" + data.hex(),
    }


def make_event(
    market: Market = MARKET_A,
    block_number: int = 1,
    log_index: int = 0,
    timestamp: int = GENESIS_TIMESTAMP,
    notional: str = "100",
    avg_price: str = "100",
    base_delta: str = "1",
) -> SwapEvent:
    return SwapEvent(
        market_id=market.id,
        tx_hash="0x" + f"{block_number:032x}{log_index:032x}",
        block_number=block_number,
        log_index=log_index,
        timestamp=timestamp,
        trader_address=TRADER,
        base_delta=Decimal(base_delta),
        quote_delta=-Decimal(notional),
        avg_price=Decimal(avg_price),
        market_name=market.name,
        contract_address=market.contract_address.lower(),
    )


class FakeLogStream:
    """Subscription fed by the test through ``push``."""

    def __init__(self, contract_address: str, from_block: int | None) -> None:
        self.contract_address = contract_address
        self.from_block = from_block
        self.queue: asyncio.Queue[list[dict[str, object]]] = asyncio.Queue()
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, logs: list[dict[str, object]]) -> None:
        self.queue.put_nowait(logs)

    def __aiter__(self) -> FakeLogStream:
        return self

    async def __anext__(self) -> list[dict[str, object]]:
        if self.closed:
            raise StopAsyncIteration
        getter = asyncio.ensure_future(self.queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        done, pending = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        for future in pending:
            future.cancel()
        if getter in done and not self.closed:
            return getter.result()
        raise StopAsyncIteration

    async def close(self) -> None:
        self._closed.set()


class FakeChain:
    """In-memory chain log source."""

    def __init__(self, head: int = 1000) -> None:
        self.head = head
        self.logs: dict[str, list[dict[str, object]]] = {}
        self.get_logs_calls: list[tuple[str, int, int]] = []
        self.streams: list[FakeLogStream] = []
        self.failing_addresses: set[str] = set()
        self.mark_prices: dict[str, Decimal | None] = {}
        self.reference_price: Decimal | None = Decimal("99")

    def add_logs(self, market: Market, logs: list[dict[str, object]]) -> None:
        self.logs.setdefault(market.contract_address.lower(), []).extend(logs)

    async def get_logs(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, object]]:
        address = contract_address.lower()
        self.get_logs_calls.append((address, from_block, to_block))
        if address in self.failing_addresses:
            raise ChainError("node unavailable")
        return [log for log in self.logs.get(address, []) if from_block <= log["blockNumber"] <= to_block]

    async def current_block_height(self) -> int:
        return self.head

    async def get_block_timestamp(self, block_number: int) -> int:
        return GENESIS_TIMESTAMP + block_number * BLOCK_TIME

    def subscribe(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int | None = None,
    ) -> FakeLogStream:
        stream = FakeLogStream(contract_address.lower(), from_block)
        self.streams.append(stream)
        return stream

    def streams_for(self, market: Market) -> list[FakeLogStream]:
        return [stream for stream in self.streams if stream.contract_address == market.contract_address.lower()]

    async def read_mark_price(self, contract_address: str) -> Decimal | None:
        return self.mark_prices.get(contract_address.lower(), Decimal("100"))

    async def read_reference_price(self) -> Decimal | None:
        return self.reference_price


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "swaps.db"


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def store(db_path: Path) -> Iterator[SQLiteEventStore]:
    store = SQLiteEventStore(db_path)
    yield store
    asyncio.run(store.close())
