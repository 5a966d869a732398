"""Configuration constants for the swap indexer."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent.parent


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_list(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name, "")
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or list(default)


# Database configuration
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite").lower()  # "sqlite" or "postgrest"
DB_PATH = Path(os.getenv("DB_PATH", str(PROJECT_ROOT / "data" / "swaps.db")))

# PostgREST (Supabase) configuration
SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or ""
# Write credentials; the indexer runs read-only without them
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("VITE_SUPABASE_SERVICE_KEY") or None
# Read-only key used by the stats viewer
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY") or os.getenv("VITE_SUPABASE_ANON_KEY") or None
STORE_HTTP_TIMEOUT = float(os.getenv("STORE_HTTP_TIMEOUT", "30"))

# Blockchain configuration
# Sepolia RPC endpoints (public, with fallback)
RPC_ENDPOINTS = _env_list("RPC_URL", ["https://ethereum-sepolia-rpc.publicnode.com"])

# Reference (index) price oracle
ORACLE_ADDRESS = os.getenv("ORACLE_ADDRESS", "0x0Ed715b613E19028eB9e5b06cc696B45C7d4D1F9")

# vAMM Swap event, amounts are 1e18 fixed point
SWAP_EVENT_SIGNATURE = "Swap(address,int256,int256,uint256)"
FIXED_POINT_DECIMALS = 18

# RPC throttling
RPC_RATE_LIMIT = float(os.getenv("RPC_RATE_LIMIT", "10.0"))  # Requests per second
RPC_RETRY_ATTEMPTS = int(os.getenv("RPC_RETRY_ATTEMPTS", "3"))
RPC_RETRY_DELAY = float(os.getenv("RPC_RETRY_DELAY", "2.0"))  # Initial delay between retries (seconds)
RPC_REQUEST_TIMEOUT = float(os.getenv("RPC_REQUEST_TIMEOUT", "30"))

# Backfill settings
GENESIS_BLOCK = int(os.getenv("GENESIS_BLOCK", "5000000"))  # Sepolia block where contracts were deployed
BACKFILL_CHUNK_SIZE = int(os.getenv("BACKFILL_CHUNK_SIZE", "10000"))  # Blocks per getLogs request
INDEX_HISTORICAL = _env_flag("INDEX_HISTORICAL", True)

# Real-time watching
WATCH_EVENTS = _env_flag("WATCH_EVENTS", True)
WATCH_POLL_INTERVAL = float(os.getenv("WATCH_POLL_INTERVAL", "4.0"))  # Seconds between log polls
WATCHER_STOP_TIMEOUT = float(os.getenv("WATCHER_STOP_TIMEOUT", "10.0"))

# Periodic jobs (milliseconds)
SNAPSHOT_INTERVAL_MS = int(os.getenv("SNAPSHOT_INTERVAL", "60000"))  # 1 minute
STATS_INTERVAL_MS = int(os.getenv("STATS_INTERVAL", "300000"))  # 5 minutes

# Stats window
STATS_WINDOW_SECONDS = 24 * 60 * 60

# Optional JSON market list overriding the built-in registry
MARKETS_FILE = os.getenv("MARKETS_FILE") or None
