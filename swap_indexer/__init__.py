"""Swap event indexer for vAMM compute-futures markets."""

__version__ = "0.1.0"
