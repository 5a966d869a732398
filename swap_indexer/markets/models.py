"""Data models for tracked markets."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Market:
    """A tracked vAMM market. ``id`` is bound to ``contract_address`` for the market's lifetime."""

    id: str
    name: str
    contract_address: str
    active: bool = True
    display_name: str = ""
    start_block: int | None = None
