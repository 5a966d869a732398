"""Decoder for vAMM Swap event logs.

Event: ``Swap(address indexed sender, int256 baseDelta, int256 quoteDelta, uint256 avgPriceX18)``.
All amounts are 1e18 fixed point and are converted to Decimal before storage.
"""

from __future__ import annotations

from decimal import Context, Decimal
from typing import Any

from beartype import beartype
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from swap_indexer.chain.interfaces import RawLog
from swap_indexer.errors import SwapDecodeError
from swap_indexer.markets.models import Market
from swap_indexer.models import SwapEvent
from swap_indexer.utils.config import FIXED_POINT_DECIMALS, SWAP_EVENT_SIGNATURE

SWAP_TOPIC = Web3.to_hex(Web3.keccak(text=SWAP_EVENT_SIGNATURE))
SWAP_DATA_TYPES = ["int256", "int256", "uint256"]

# Wide enough for any 256-bit integer
_FIXED_POINT_CONTEXT = Context(prec=100)
_SCALE = Decimal(10) ** FIXED_POINT_DECIMALS

# ABI fragments for the view calls used by price snapshots
VAMM_ABI = [
    {
        "type": "function",
        "name": "getMarkPrice",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]
ORACLE_ABI = [
    {
        "type": "function",
        "name": "getPrice",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]


@beartype
def from_fixed_point(raw: int) -> Decimal:
    """Convert a 1e18 fixed-point integer to an exact Decimal."""
    return _FIXED_POINT_CONTEXT.divide(Decimal(raw), _SCALE)


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value)).lower()
    if isinstance(value, str):
        return (value if value.startswith("0x") else f"0x{value}").lower()
    raise SwapDecodeError(f"Expected hex string or bytes, got {type(value).__name__}")


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return bytes.fromhex(value[2:] if value.startswith("0x") else value)
        except ValueError as e:
            raise SwapDecodeError(f"Invalid hex data: {e}") from e
    raise SwapDecodeError(f"Expected hex string or bytes, got {type(value).__name__}")


def _require_int(log: RawLog, field: str) -> int:
    try:
        value = log[field]
    except KeyError as e:
        raise SwapDecodeError(f"Log is missing '{field}'") from e
    if isinstance(value, bool):
        raise SwapDecodeError(f"Field '{field}' must be an integer")
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith("0x") else int(value)
        except ValueError as e:
            raise SwapDecodeError(f"Field '{field}' is not an integer: {value!r}") from e
    if not isinstance(value, int):
        raise SwapDecodeError(f"Field '{field}' must be an integer, got {type(value).__name__}")
    return value


def log_position(log: RawLog) -> tuple[int, int]:
    """(blockNumber, logIndex) of a raw log, used to order application."""
    return (_require_int(log, "blockNumber"), _require_int(log, "logIndex"))


@beartype
def decode_swap_log(log: RawLog, market: Market, block_timestamp: int) -> SwapEvent:
    """
    Decode a raw Swap log into a SwapEvent.

    Args:
        log: Raw log (web3 LogReceipt or an equivalent mapping)
        market: Market the log was fetched for
        block_timestamp: Unix timestamp of the log's block

    Returns:
        The decoded event

    Raises:
        SwapDecodeError: If any field is missing, malformed or out of range
    """
    block_number, log_index = log_position(log)

    topics = log.get("topics")
    if not topics or len(topics) < 2:
        raise SwapDecodeError(f"Invalid log: insufficient topics ({len(topics or [])})")
    if _to_hex(topics[0]) != SWAP_TOPIC:
        raise SwapDecodeError(f"Not a Swap log: topic0={_to_hex(topics[0])}")

    # Indexed sender is the right-most 20 bytes of topic1
    sender_topic = _to_hex(topics[1])
    if len(sender_topic) != 66:
        raise SwapDecodeError(f"Invalid sender topic: {sender_topic}")
    trader_address = "0x" + sender_topic[-40:]

    if "transactionHash" not in log:
        raise SwapDecodeError("Log is missing 'transactionHash'")
    tx_hash = _to_hex(log["transactionHash"])

    data = _to_bytes(log.get("data", b""))
    if not data:
        raise SwapDecodeError("Empty event data")
    try:
        base_raw, quote_raw, price_raw = decode(SWAP_DATA_TYPES, data)
    except (DecodingError, ValueError, TypeError) as e:
        raise SwapDecodeError(f"Failed to decode Swap data: {e}") from e

    avg_price = from_fixed_point(price_raw)
    if avg_price <= 0:
        raise SwapDecodeError(f"Non-positive avgPrice in tx {tx_hash}")

    return SwapEvent(
        market_id=market.id,
        tx_hash=tx_hash,
        block_number=block_number,
        log_index=log_index,
        timestamp=block_timestamp,
        trader_address=trader_address,
        base_delta=from_fixed_point(base_raw),
        quote_delta=from_fixed_point(quote_raw),
        avg_price=avg_price,
        market_name=market.name,
        contract_address=market.contract_address.lower(),
    )
