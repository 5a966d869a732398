"""Blockchain client for reading vAMM logs and prices over JSON-RPC."""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import TypeVar

from beartype import beartype
from web3 import Web3

from swap_indexer.chain.interfaces import RawLog
from swap_indexer.chain.swap_decoder import ORACLE_ABI, VAMM_ABI, from_fixed_point
from swap_indexer.errors import ChainError
from swap_indexer.utils.config import (
    BACKFILL_CHUNK_SIZE,
    ORACLE_ADDRESS,
    RPC_ENDPOINTS,
    RPC_RATE_LIMIT,
    RPC_REQUEST_TIMEOUT,
    RPC_RETRY_ATTEMPTS,
    RPC_RETRY_DELAY,
    WATCH_POLL_INTERVAL,
)
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

BLOCK_TIMESTAMP_CACHE_SIZE = 4096


class Web3ChainLogSource:
    """
    Chain log source backed by web3 HTTP providers.

    RPC calls are blocking; the async methods run them in worker threads so
    several market watchers can poll concurrently. Requests are rate limited and
    retried with endpoint fallback and exponential backoff.
    """

    def __init__(
        self,
        rpc_endpoints: Sequence[str] | None = None,
        oracle_address: str | None = ORACLE_ADDRESS,
        rate_limit: float = RPC_RATE_LIMIT,
        max_retries: int = RPC_RETRY_ATTEMPTS,
        retry_delay: float = RPC_RETRY_DELAY,
        poll_interval: float = WATCH_POLL_INTERVAL,
    ) -> None:
        """
        Initialize the chain client. Connection is established on first use.

        Args:
            rpc_endpoints: List of RPC endpoints (uses config default if None)
            oracle_address: Reference price oracle contract, None disables it
            rate_limit: Maximum requests per second across all callers
            max_retries: Attempts per request before raising ChainError
            retry_delay: Initial backoff delay in seconds
            poll_interval: Seconds between polls for live subscriptions
        """
        self.rpc_endpoints = list(rpc_endpoints) if rpc_endpoints else list(RPC_ENDPOINTS)
        self.oracle_address = oracle_address
        self.rate_limit = rate_limit
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.current_endpoint_index = 0
        self.last_request_time = 0.0
        self.web3: Web3 | None = None
        self._lock = threading.Lock()
        self._block_timestamps: OrderedDict[int, int] = OrderedDict()

    def _connect(self) -> Web3:
        """Connect to an RPC endpoint, trying each one in turn."""
        last_error: Exception | None = None

        for _ in range(len(self.rpc_endpoints)):
            endpoint = self.rpc_endpoints[self.current_endpoint_index]
            try:
                logger.info(f"Connecting to RPC: {endpoint}")
                web3 = Web3(Web3.HTTPProvider(endpoint, request_kwargs={"timeout": RPC_REQUEST_TIMEOUT}))
                block_number = web3.eth.block_number
                logger.info(f"Connected successfully. Current block: {block_number}")
                self.web3 = web3
                return web3
            except Exception as e:
                last_error = e
                logger.warning(f"Failed to connect to {endpoint}: {e}")
                self.current_endpoint_index = (self.current_endpoint_index + 1) % len(self.rpc_endpoints)

        raise ChainError(f"Failed to connect to any RPC endpoint: {last_error}") from last_error

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limits."""
        with self._lock:
            min_interval = 1.0 / self.rate_limit
            wait = self.last_request_time + min_interval - time.time()
            self.last_request_time = max(time.time(), self.last_request_time + min_interval)
        if wait > 0:
            time.sleep(wait)

    def _retry_request(self, func: Callable[[Web3], T]) -> T:
        """
        Execute a request with retry logic and fallback RPC.

        Args:
            func: Callable receiving the connected Web3 instance

        Returns:
            Result of func

        Raises:
            ChainError: If all retries fail
        """
        last_error: Exception | None = None
        delay = self.retry_delay

        for attempt in range(self.max_retries):
            try:
                web3 = self.web3 or self._connect()
                self._wait_for_rate_limit()
                return func(web3)
            except Exception as e:
                last_error = e
                error_str = str(e).lower()

                is_connection_error = any(
                    keyword in error_str for keyword in ["connection", "timeout", "network", "refused"]
                )
                is_rate_limit = any(keyword in error_str for keyword in ["rate limit", "too many requests", "429"])

                if is_connection_error or is_rate_limit:
                    logger.warning(
                        f"RPC error (attempt {attempt + 1}/{self.max_retries}): {e}. Trying next endpoint...",
                    )
                    self.current_endpoint_index = (self.current_endpoint_index + 1) % len(self.rpc_endpoints)
                    self.web3 = None
                    delay = self.retry_delay
                elif attempt < self.max_retries - 1:
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. Retrying in {delay}s...",
                    )
                    time.sleep(delay)
                    delay *= 2

        raise ChainError(f"RPC request failed after {self.max_retries} attempts: {last_error}") from last_error

    async def _call(self, func: Callable[[Web3], T]) -> T:
        return await asyncio.to_thread(self._retry_request, func)

    @beartype
    async def get_logs(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """
        Get event logs emitted by a contract in a block range.

        Args:
            contract_address: Contract address
            event_signature: Event signature, e.g. "Swap(address,int256,int256,uint256)"
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            List of raw logs in node order
        """

        def _get_logs(web3: Web3) -> list[RawLog]:
            logs = web3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": Web3.to_checksum_address(contract_address),
                    "topics": [Web3.to_hex(Web3.keccak(text=event_signature))],
                },
            )
            logger.debug(f"Retrieved {len(logs)} logs from blocks {from_block}-{to_block}")
            return list(logs)

        return await self._call(_get_logs)

    async def current_block_height(self) -> int:
        return int(await self._call(lambda web3: web3.eth.block_number))

    @beartype
    async def get_block_timestamp(self, block_number: int) -> int:
        """Unix timestamp of a block, cached."""
        cached = self._block_timestamps.get(block_number)
        if cached is not None:
            return cached

        block = await self._call(lambda web3: web3.eth.get_block(block_number))
        timestamp = int(block["timestamp"])
        self._block_timestamps[block_number] = timestamp
        if len(self._block_timestamps) > BLOCK_TIMESTAMP_CACHE_SIZE:
            self._block_timestamps.popitem(last=False)
        return timestamp

    def subscribe(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int | None = None,
    ) -> PollingLogSubscription:
        """Open a live log stream; starts after the current head unless ``from_block`` is given."""
        return PollingLogSubscription(
            source=self,
            contract_address=contract_address,
            event_signature=event_signature,
            poll_interval=self.poll_interval,
            from_block=from_block,
        )

    async def _read_uint(self, address: str, abi: list[dict[str, object]], function_name: str) -> Decimal:
        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
            return int(contract.functions[function_name]().call())

        return from_fixed_point(await self._call(_read))

    @beartype
    async def read_mark_price(self, contract_address: str) -> Decimal | None:
        """vAMM mark price, or None when the read fails."""
        try:
            return await self._read_uint(contract_address, VAMM_ABI, "getMarkPrice")
        except ChainError as e:
            logger.error(f"Error fetching mark price for {contract_address}: {e}")
            return None

    async def read_reference_price(self) -> Decimal | None:
        """Oracle (index) price, or None when the feed is unavailable."""
        if not self.oracle_address:
            return None
        try:
            return await self._read_uint(self.oracle_address, ORACLE_ABI, "getPrice")
        except ChainError as e:
            logger.error(f"Error fetching oracle price: {e}")
            return None

    def close(self) -> None:
        """Drop the provider. HTTP providers hold no persistent connection."""
        logger.debug("Closing blockchain client connection")
        self.web3 = None


class PollingLogSubscription:
    """
    Live log stream implemented by polling eth_getLogs for new blocks.

    Each iteration yields the non-empty batch of logs found since the previous
    poll. Failed polls are logged and retried on the next interval. After
    ``close()`` no further batch is yielded, even if a poll was in flight.
    """

    def __init__(
        self,
        source: Web3ChainLogSource,
        contract_address: str,
        event_signature: str,
        poll_interval: float,
        from_block: int | None = None,
        max_range: int = BACKFILL_CHUNK_SIZE,
    ) -> None:
        self.source = source
        self.contract_address = contract_address
        self.event_signature = event_signature
        self.poll_interval = poll_interval
        self.max_range = max_range
        self._next_block = from_block
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __aiter__(self) -> PollingLogSubscription:
        return self

    async def _sleep(self) -> bool:
        """Sleep one poll interval. Returns True if the subscription was closed meanwhile."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def __anext__(self) -> list[RawLog]:
        while not self.closed:
            try:
                head = await self.source.current_block_height()
                if self._next_block is None:
                    self._next_block = head + 1
                if head >= self._next_block:
                    to_block = min(head, self._next_block + self.max_range - 1)
                    logs = await self.source.get_logs(
                        self.contract_address,
                        self.event_signature,
                        self._next_block,
                        to_block,
                    )
                    if self.closed:
                        break
                    self._next_block = to_block + 1
                    if logs:
                        return logs
                    continue
            except ChainError as e:
                logger.warning(f"Log poll failed for {self.contract_address}: {e}")

            if await self._sleep():
                break

        raise StopAsyncIteration

    async def close(self) -> None:
        self._closed.set()
