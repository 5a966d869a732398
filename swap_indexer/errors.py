"""Exception types raised across the indexer."""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for indexer errors."""

    # Events committed by the failing call before it raised
    inserted = 0


class ChainError(IndexerError):
    """A chain read failed after retries. Transient: retried on the next natural trigger."""


class SwapDecodeError(IndexerError, ValueError):
    """A raw log could not be decoded into a SwapEvent. The single log is skipped."""


class StoreError(IndexerError):
    """A storage operation failed for a reason other than a duplicate key."""


class StoreClosedError(StoreError):
    """The store was used after close()."""
