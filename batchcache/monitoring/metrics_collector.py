# ==============================================
# MetricsCollector
# ==============================================
#
# PURPOSE:
#   Passive observer of the batching pipeline. Aggregates how many
#   items and batches were processed, how long consumers took, how
#   many flushes failed, and how much memory the process uses.
#   Nothing on the critical path depends on it.
#
# CLASS: MetricsCollector
# -----------------------
#   Constructor:
#   ------------
#   - __init__(instance_id="default", report_interval=60.0)
#
#   Recording:
#   ----------
#   - record_batch(batch_size: int, elapsed_seconds: float) -> None
#   - record_error() -> None
#   - update_memory_usage() -> dict        (psutil, MB)
#
#   Sources:
#   --------
#   - bind(cache=None, buffer_depths=None)
#       Attach the cache (for hit/miss counters) and a callable that
#       returns current buffer depths per category. Both optional.
#
#   Reading:
#   --------
#   - snapshot() -> MetricsSnapshot         (frozen, read-only)
#   - report(final=False) -> dict           (logged; DEBUG or INFO if final)
#
#   Lifecycle:
#   ----------
#   - start() / stop()   periodic report task on the running loop
#   - reset()
#
# ==============================================

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import psutil

from batchcache.caching.cache_entry import CacheStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only view of every counter the framework exposes."""

    cache: Optional[CacheStats]
    buffer_depths: Dict[str, int]
    total_processed: int
    batches_processed: int
    errors: int
    min_latency_ms: float
    max_latency_ms: float
    avg_latency_ms: float
    average_batch_size: float
    memory_mb: Dict[str, float] = field(default_factory=dict)
    uptime_seconds: float = 0.0


class MetricsCollector:
    """Aggregates throughput, latency, error and memory counters."""

    def __init__(self, instance_id: str = "default", report_interval: float = 60.0):
        self.instance_id = instance_id
        self.report_interval = report_interval

        self._cache = None
        self._buffer_depths: Optional[Callable[[], Dict[str, int]]] = None
        self._report_task: Optional[asyncio.Task] = None
        self._process = psutil.Process()

        self.reset(log=False)

    def bind(self, cache=None, buffer_depths: Optional[Callable[[], Dict[str, int]]] = None) -> None:
        """Attach the sources whose counters are folded into snapshots."""
        if cache is not None:
            self._cache = cache
        if buffer_depths is not None:
            self._buffer_depths = buffer_depths

    # ======================================
    # Recording
    # ======================================
    def record_batch(self, batch_size: int, elapsed_seconds: float) -> None:
        """
        Record one successfully processed batch.

        Args:
            batch_size: Number of items the consumer received
            elapsed_seconds: Time the consumer took
        """
        elapsed_ms = elapsed_seconds * 1000.0

        self.items_processed += batch_size
        self.batches_processed += 1

        self.min_ms = min(self.min_ms, elapsed_ms)
        self.max_ms = max(self.max_ms, elapsed_ms)
        self.total_ms += elapsed_ms

    def record_error(self) -> None:
        self.errors += 1

    def update_memory_usage(self) -> Dict[str, float]:
        """Refresh the process memory counters (MB)."""
        info = self._process.memory_info()
        self.memory_mb = {
            "rss": round(info.rss / 1024 / 1024, 2),
            "vms": round(info.vms / 1024 / 1024, 2),
        }
        return dict(self.memory_mb)

    # ======================================
    # Computed values
    # ======================================
    @property
    def avg_ms(self) -> float:
        if self.batches_processed == 0:
            return 0.0
        return self.total_ms / self.batches_processed

    @property
    def average_batch_size(self) -> float:
        if self.batches_processed == 0:
            return 0.0
        return self.items_processed / self.batches_processed

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def snapshot(self) -> MetricsSnapshot:
        """Build a read-only snapshot including cache and buffer gauges."""
        self.update_memory_usage()

        return MetricsSnapshot(
            cache=self._cache.stats() if self._cache is not None else None,
            buffer_depths=self._buffer_depths() if self._buffer_depths is not None else {},
            total_processed=self.items_processed,
            batches_processed=self.batches_processed,
            errors=self.errors,
            min_latency_ms=0.0 if self.min_ms == float("inf") else round(self.min_ms, 3),
            max_latency_ms=round(self.max_ms, 3),
            avg_latency_ms=round(self.avg_ms, 3),
            average_batch_size=round(self.average_batch_size, 2),
            memory_mb=dict(self.memory_mb),
            uptime_seconds=round(self.uptime_seconds, 3),
        )

    def report(self, final: bool = False) -> Dict[str, Any]:
        """
        Build and log a performance report.

        Args:
            final: Log at INFO instead of DEBUG (used on shutdown)

        Returns:
            Report dictionary
        """
        snap = self.snapshot()
        minutes = snap.uptime_seconds / 60 if snap.uptime_seconds > 0 else 0

        report = {
            "instance_id": self.instance_id,
            "uptime_seconds": snap.uptime_seconds,
            "performance": {
                "items_processed": snap.total_processed,
                "batches_processed": snap.batches_processed,
                "average_batch_size": snap.average_batch_size,
                "items_per_minute": round(snap.total_processed / minutes, 2) if minutes else 0.0,
                "batches_per_minute": round(snap.batches_processed / minutes, 2) if minutes else 0.0,
            },
            "processing_time_ms": {
                "min": snap.min_latency_ms,
                "max": snap.max_latency_ms,
                "avg": snap.avg_latency_ms,
            },
            "memory_mb": snap.memory_mb,
            "buffer_depths": snap.buffer_depths,
            "cache": snap.cache.to_dict() if snap.cache is not None else None,
            "errors": snap.errors,
            "error_rate": (
                round(snap.errors / snap.batches_processed * 100, 2)
                if snap.batches_processed else 0.0
            ),
        }

        level = logging.INFO if final else logging.DEBUG
        logger.log(level, f"Performance report{' (final)' if final else ''}: {report}")
        return report

    # ======================================
    # Lifecycle
    # ======================================
    def start(self) -> None:
        """Start the periodic report task on the running loop."""
        if self._report_task is not None and not self._report_task.done():
            return
        self.started_at = time.monotonic()
        self._report_task = asyncio.get_running_loop().create_task(self._report_loop())
        logger.info(f"Metrics collector started (interval={self.report_interval}s)")

    def stop(self) -> Dict[str, Any]:
        """Cancel the report task and emit the final report."""
        if self._report_task is not None:
            self._report_task.cancel()
            self._report_task = None
        return self.report(final=True)

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.report_interval)
            self.report()

    def reset(self, log: bool = True) -> None:
        self.items_processed = 0
        self.batches_processed = 0
        self.errors = 0
        self.min_ms = float("inf")
        self.max_ms = 0.0
        self.total_ms = 0.0
        self.memory_mb: Dict[str, float] = {"rss": 0.0, "vms": 0.0}
        self.started_at = time.monotonic()
        if log:
            logger.info(f"Metrics reset (instance={self.instance_id})")
