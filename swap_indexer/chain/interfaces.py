"""Chain log source contract consumed by the pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from decimal import Decimal
from typing import Any, Protocol

# A raw log as returned by eth_getLogs (web3 LogReceipt or an equivalent mapping)
RawLog = Mapping[str, Any]


class LogStream(Protocol):
    """Live stream of log batches. Iteration ends once ``close()`` has been called."""

    def __aiter__(self) -> AsyncIterator[Sequence[RawLog]]: ...

    async def close(self) -> None: ...


class ChainLogSource(Protocol):
    """Read-only access to a blockchain node. Every call may raise ChainError."""

    async def get_logs(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]: ...

    async def current_block_height(self) -> int: ...

    async def get_block_timestamp(self, block_number: int) -> int: ...

    def subscribe(
        self,
        contract_address: str,
        event_signature: str,
        from_block: int | None = None,
    ) -> LogStream: ...

    async def read_mark_price(self, contract_address: str) -> Decimal | None: ...

    async def read_reference_price(self) -> Decimal | None: ...
