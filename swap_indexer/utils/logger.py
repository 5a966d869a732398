"""Logging configuration shared by the indexer components."""

from __future__ import annotations

import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

LOGS_DIR = Path(os.getenv("LOGS_DIR", str(Path(__file__).parent.parent.parent / "logs")))
LOGS_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOGS_DIR / "indexer.log"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Shared by every component so one summary covers the whole run
_METRICS: dict[str, float] = {}


def _build_handlers() -> list[logging.Handler]:
    """Console at INFO, log file at DEBUG."""
    to_console = logging.StreamHandler(sys.stdout)
    to_console.setLevel(logging.INFO)
    to_console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    to_file = logging.FileHandler(LOG_FILE, encoding="utf-8")
    to_file.setLevel(logging.DEBUG)
    to_file.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    return [to_console, to_file]


class PerformanceLogger(logging.LoggerAdapter):
    """
    Component logger that also records throughput and timing metrics.

    Metrics from all components land in one table, printed by ``log_summary``
    when the indexer stops.
    """

    def __init__(self, name: str) -> None:
        base = logging.getLogger(name)
        base.setLevel(logging.DEBUG)
        # Handlers are attached once per logger name
        if not base.handlers:
            for handler in _build_handlers():
                base.addHandler(handler)
        super().__init__(base, {})
        self.metrics = _METRICS

    def record_metric(self, name: str, value: float) -> None:
        """
        Record a performance metric.

        Args:
            name: Metric name, e.g. "H100-PERP.backfill_events_per_sec"
            value: Metric value
        """
        self.metrics[name] = value
        self.debug(f"{name} = {value:.2f}")

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Record the wall-clock duration of the wrapped block as ``<name>.seconds``."""
        started = time.monotonic()
        try:
            yield
        finally:
            self.record_metric(f"{name}.seconds", time.monotonic() - started)

    def log_summary(self) -> None:
        if not self.metrics:
            return
        width = max(len(name) for name in self.metrics)
        self.info("Metrics:")
        for name in sorted(self.metrics):
            self.info(f"  {name:<{width}}  {self.metrics[name]:.2f}")


def get_logger(name: str) -> PerformanceLogger:
    """
    Get the logger for a component.

    Args:
        name: Logger name (usually __name__)
    """
    return PerformanceLogger(name)
