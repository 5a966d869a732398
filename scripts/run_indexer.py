"""Main entry point: run the swap indexer until SIGINT/SIGTERM."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from swap_indexer.chain.blockchain_client import Web3ChainLogSource
from swap_indexer.database.store_factory import open_store
from swap_indexer.errors import StoreError
from swap_indexer.markets.registry import MarketRegistry
from swap_indexer.pipeline.orchestrator import Orchestrator, OrchestratorOptions
from swap_indexer.utils.config import (
    DB_PATH,
    INDEX_HISTORICAL,
    MARKETS_FILE,
    RPC_ENDPOINTS,
    SNAPSHOT_INTERVAL_MS,
    STATS_INTERVAL_MS,
    STORE_BACKEND,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
    WATCH_EVENTS,
)
from swap_indexer.utils.logger import get_logger

logger = get_logger(__name__)


async def async_main(options: OrchestratorOptions) -> int:
    """
    Run the indexer until a termination signal arrives.

    Returns:
        Process exit code
    """
    registry = MarketRegistry.from_json(MARKETS_FILE) if MARKETS_FILE else MarketRegistry()

    if not options.write_credentials:
        print("\nNo write credentials (SUPABASE_SERVICE_KEY) configured.")
        print("The indexer needs write permissions to store events; running read-only, nothing to do.")
        return 0

    try:
        store = open_store(options.write_credentials)
    except StoreError as e:
        print(f"\n✗ Could not open store: {e}")
        return 1

    chain = Web3ChainLogSource()
    orchestrator = Orchestrator(store, chain, registry)
    shutdown = await orchestrator.start(options)
    if shutdown is None:
        return 0

    print("\n✓ Indexer is now running!")
    print("\nTracking markets:")
    for market in registry.list_active_markets():
        print(f"  • {market.name} ({market.contract_address})")
    print("\nPress Ctrl+C to stop the indexer")
    print("-" * 50)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await stop_event.wait()
    print("\nShutting down indexer...")
    await shutdown()
    chain.close()
    print("✓ Indexer stopped gracefully")
    return 0


def main(
    index_historical: bool = INDEX_HISTORICAL,
    watch_events: bool = WATCH_EVENTS,
    snapshot_interval_ms: int = SNAPSHOT_INTERVAL_MS,
    stats_interval_ms: int = STATS_INTERVAL_MS,
) -> None:
    """
    Print the configuration and run the indexer.

    Args:
        index_historical: Backfill each market from its cursor before watching
        watch_events: Subscribe to new swaps in real time
        snapshot_interval_ms: Price snapshot period
        stats_interval_ms: 24h stats recomputation period
    """
    print("Swap Event Indexer")
    print("=" * 50)
    print(f"RPC: {', '.join(RPC_ENDPOINTS)}")
    print(f"Store: {STORE_BACKEND} ({DB_PATH if STORE_BACKEND == 'sqlite' else SUPABASE_URL})")
    print(f"Price snapshots: every {snapshot_interval_ms / 1000:g}s")
    print(f"Stats updates: every {stats_interval_ms / 1000:g}s")
    print(f"Historical indexing: {'ON' if index_historical else 'OFF'}")
    print(f"Real-time watching: {'ON' if watch_events else 'OFF'}")
    print("-" * 50)

    options = OrchestratorOptions(
        backfill_on_historical=index_historical,
        watch_live=watch_events,
        snapshot_interval_ms=snapshot_interval_ms,
        stats_interval_ms=stats_interval_ms,
        write_credentials=SUPABASE_SERVICE_KEY,
    )
    try:
        exit_code = asyncio.run(async_main(options))
    except Exception as e:
        logger.exception("Fatal error while running indexer")
        print(f"\n✗ Error: {e}")
        print("\nCheck logs/indexer.log for details.")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Index vAMM swap events and maintain price snapshots and 24h stats",
    )
    parser.add_argument(
        "--no-historical",
        action="store_true",
        help="Skip the historical backfill",
    )
    parser.add_argument(
        "--no-watch",
        action="store_true",
        help="Do not subscribe to new swaps",
    )
    parser.add_argument(
        "--snapshot-interval",
        type=int,
        default=SNAPSHOT_INTERVAL_MS,
        help="Price snapshot interval in milliseconds",
    )
    parser.add_argument(
        "--stats-interval",
        type=int,
        default=STATS_INTERVAL_MS,
        help="24h stats interval in milliseconds",
    )

    args = parser.parse_args()

    main(
        index_historical=INDEX_HISTORICAL and not args.no_historical,
        watch_events=WATCH_EVENTS and not args.no_watch,
        snapshot_interval_ms=args.snapshot_interval,
        stats_interval_ms=args.stats_interval,
    )
