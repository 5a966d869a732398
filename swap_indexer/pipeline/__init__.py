"""Ingestion and aggregation pipeline."""

from __future__ import annotations

from swap_indexer.pipeline.backfill import BackfillEngine, apply_swap_logs
from swap_indexer.pipeline.orchestrator import Orchestrator, OrchestratorOptions
from swap_indexer.pipeline.snapshots import SnapshotScheduler
from swap_indexer.pipeline.stats import StatsAggregator, compute_stats, get_24h_stats
from swap_indexer.pipeline.watcher import RealtimeWatcher, WatchHandle

__all__ = [
    "BackfillEngine",
    "Orchestrator",
    "OrchestratorOptions",
    "RealtimeWatcher",
    "SnapshotScheduler",
    "StatsAggregator",
    "WatchHandle",
    "apply_swap_logs",
    "compute_stats",
    "get_24h_stats",
]
