"""Static registry of tracked markets."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from beartype import beartype
from web3 import Web3

from swap_indexer.markets.models import Market

if TYPE_CHECKING:
    from collections.abc import Iterable

VAMM_PROXY = "0x81C40Fb63dFBa1C7d6C32b7a23fc25bd2E6bE3Cc"
VAMM_PROXY_OLD = "0xd5d946Fc7c41C1AD7C0aC1BdfDCE53FE0a860204"


@beartype
def market_id_for(name: str) -> str:
    """Ids of the built-in markets are keccak256 of the market name."""
    return Web3.to_hex(Web3.keccak(text=name))


DEFAULT_MARKETS: tuple[Market, ...] = (
    Market(
        id=market_id_for("H100-PERP"),
        name="H100-PERP",
        display_name="H100 GPU",
        contract_address=VAMM_PROXY,
    ),
    Market(
        id="0xf4aa47cc83b0d01511ca8025a996421dda6fbab1764466da4b0de6408d3db2e2",
        name="H100-HyperScalers-PERP",
        display_name="H100 HyperScalers",
        contract_address="0xFE1df531084Dcf0Fe379854823bC5d402932Af99",
    ),
    Market(
        id="0x9d2d658888da74a10ac9263fc14dcac4a834dd53e8edf664b4cc3b2b4a23f214",
        name="H100-non-HyperScalers-PERP",
        display_name="H100 non-HyperScalers",
        contract_address="0x19574B8C91717389231DA5b0579564d6F81a79B0",
    ),
    Market(
        id="0xb1bae2ea6c465ce4acb7d8a4a16a8899c9cc94ac35b5a82403875c6b2aa34f3e",
        name="T4-PERP",
        display_name="T4 GPU",
        contract_address="0x910C730dBEd5384fbF83bf1F387609bf83E8ffDd",
    ),
    # Alias of H100-PERP on the same vAMM
    Market(
        id=market_id_for("ETH-PERP-V2"),
        name="ETH-PERP-V2",
        display_name="H100 GPU",
        contract_address=VAMM_PROXY,
    ),
    Market(
        id=market_id_for("ETH-PERP"),
        name="ETH-PERP",
        display_name="Test Market [OLD]",
        contract_address=VAMM_PROXY_OLD,
        active=False,
    ),
)


class MarketRegistry:
    """Read-only lookup over the configured markets."""

    def __init__(self, markets: Iterable[Market] = DEFAULT_MARKETS) -> None:
        self._markets: dict[str, Market] = {}
        for market in markets:
            if market.id in self._markets:
                raise ValueError(f"Duplicate market id: {market.id}")
            self._markets[market.id] = market

    @classmethod
    def from_json(cls, path: str | Path) -> MarketRegistry:
        """
        Load markets from a JSON file.

        The file holds a list of objects with ``id``, ``name``, ``contract_address``
        and optionally ``active``, ``display_name`` and ``start_block``.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"Market file {path} must contain a JSON list")

        markets = []
        for entry in raw:
            try:
                markets.append(
                    Market(
                        id=str(entry["id"]),
                        name=str(entry["name"]),
                        contract_address=Web3.to_checksum_address(entry["contract_address"]),
                        active=bool(entry.get("active", True)),
                        display_name=str(entry.get("display_name", "")),
                        start_block=entry.get("start_block"),
                    ),
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid market entry {entry!r}: {e}") from e
        return cls(markets)

    def list_all(self) -> list[Market]:
        return list(self._markets.values())

    def list_active_markets(self) -> list[Market]:
        """Markets eligible for backfill and watching; deprecated ones stay queryable via get()."""
        return [market for market in self._markets.values() if market.active]

    @beartype
    def get(self, market_id: str) -> Market | None:
        return self._markets.get(market_id)

    def __len__(self) -> int:
        return len(self._markets)
