# ==============================================
# BatchCoordinator
# ==============================================
#
# PURPOSE:
#   Owns one BatchBuffer per category and the consumer registered for
#   each. Producers call add(); the coordinator decides when a category
#   flushes and hands the detached batch to its consumer.
#
# FLUSH TRIGGERS (whichever fires first):
#   1. Size  → depth reaches batch_size: the batch is cut off in the
#              same add() call and its delivery scheduled right away.
#              If a flush is already in flight or queued, that flush
#              picks the items up instead.
#   2. Time  → otherwise a single deferred flush is armed for
#              flush_interval seconds (at most one timer per category)
#   3. Stale → flush_stale() / the periodic task flushes any category
#              whose oldest item is older than stale_after_seconds
#
# FLUSH SEMANTICS:
#   - Flushes of one category are serialised by the buffer's lock.
#     Extra requests while one is queued collapse into it.
#   - Items are detached before the consumer runs; adds during the
#     consumer go into a fresh sequence. Each cut batch is its own
#     consumer call, so no call receives more than batch_size items
#     from the size trigger.
#   - Consumer failure: error counted, batch put back IN FRONT of
#     anything added since, retry timer armed. Never raised to callers.
#   - Optional max_retries moves items that keep failing to the
#     dead-letter list instead of requeueing them forever.
#
# CLASS: BatchCoordinator
# -----------------------
#   - register_consumer(category, fn) -> None
#   - add(category, item) -> bool               (sync, fire-and-forget)
#   - flush(category) -> FlushResult            (async)
#   - flush_all() -> dict[Category, FlushResult]
#   - flush_stale(stale_after=None) -> dict[Category, FlushResult]
#   - drain() / stop() / clear()
#   - stats() / buffer_depths() / dead_letters()
#
# ==============================================

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from batchcache.buffering.batch_buffer import BatchBuffer, BufferedItem
from batchcache.categories import Category
from batchcache.config import BatchConfig
from batchcache.exceptions import UnknownCategoryError
from batchcache.monitoring.metrics_collector import MetricsCollector

logger = logging.getLogger(__name__)

Consumer = Callable[[List[Any]], Union[None, Awaitable[None]]]


class FlushStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"
    EMPTY = "empty"
    NO_CONSUMER = "no_consumer"
    UNKNOWN_CATEGORY = "unknown_category"


@dataclass
class FlushResult:
    category: Union[Category, str]
    status: FlushStatus
    items: int = 0
    elapsed_seconds: float = 0.0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status in (FlushStatus.SUCCESS, FlushStatus.EMPTY)


@dataclass
class DeadLetter:
    category: Category
    payload: Any
    attempts: int
    failed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class BatchCoordinator:
    """
    Dual-trigger batching with at-least-once redelivery per category.
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        instance_id: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize one buffer per configured category.

        Args:
            config: Batch configuration. Defaults to BatchConfig().
            metrics: Collector that receives (batch size, elapsed) per flush.
            instance_id: Label used in log messages.
            clock: Time source for item ingestion timestamps.
        """
        self._config = config or BatchConfig()
        self._metrics = metrics
        self.instance_id = instance_id
        self._clock = clock

        self._buffers: Dict[Category, BatchBuffer] = {
            category: BatchBuffer(
                category,
                batch_size=settings.batch_size,
                flush_interval=settings.flush_interval_seconds,
            )
            for category, settings in self._config.categories.items()
        }
        self._consumers: Dict[Category, Consumer] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._periodic_task: Optional[asyncio.Task] = None
        self._dead_letters: List[DeadLetter] = []

        self._total_processed = 0
        self._batches_processed = 0
        self._errors = 0
        self._last_flush: Optional[str] = None

    @property
    def categories(self) -> List[Category]:
        return list(self._buffers.keys())

    # ======================================
    # Registration / ingestion
    # ======================================
    def register_consumer(self, category: Union[Category, str], consumer: Consumer) -> None:
        """
        Bind the consumer for a category, replacing any previous one.

        Raises:
            UnknownCategoryError: category is not declared in the config
            TypeError: consumer is not callable
        """
        resolved = Category.parse(category)
        if resolved not in self._buffers:
            raise UnknownCategoryError(category)
        if not callable(consumer):
            raise TypeError("consumer must be callable")

        self._consumers[resolved] = consumer
        logger.debug(f"Consumer registered for category '{resolved}'")

    def add(self, category: Union[Category, str], item: Any) -> bool:
        """
        Buffer an item for its category.

        Unknown categories are logged and the item dropped; nothing is
        raised to the producer.

        Returns:
            True if the item was buffered
        """
        try:
            resolved = Category.parse(category)
        except UnknownCategoryError:
            logger.warning(f"Unknown buffer category '{category}', item dropped")
            return False

        buffer = self._buffers.get(resolved)
        if buffer is None:
            logger.warning(f"Category '{resolved}' is not configured, item dropped")
            return False

        depth = buffer.append(BufferedItem(payload=item, ingested_at=self._clock()))

        if depth >= buffer.batch_size:
            if buffer.lock.locked() or buffer.flush_queued:
                # A flush is in flight or queued; it picks these items up
                self._request_flush(resolved)
            else:
                self._cut(resolved)
        elif not buffer.flush_queued:
            buffer.arm_timer(buffer.flush_interval, self._request_flush)

        return True

    def _cut(self, category: Category) -> None:
        """Detach a full buffer in the current tick and schedule its delivery."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, flush of '{category}' deferred")
            return

        buffer = self._buffers[category]
        buffer.cancel_timer()
        buffer.cut()
        self._track(loop.create_task(self._flush_ready(category)))

    def _request_flush(self, category: Category) -> None:
        buffer = self._buffers[category]
        buffer.cancel_timer()

        if buffer.flush_queued:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, flush of '{category}' deferred")
            return

        buffer.flush_queued = True
        self._track(loop.create_task(self.flush(category)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ======================================
    # Flushing
    # ======================================
    async def flush(self, category: Union[Category, str]) -> FlushResult:
        """
        Hand every pending item of a category to its consumer.

        Batches already cut at the size threshold are delivered first,
        one consumer call each, followed by the open sequence.

        Returns:
            FlushResult describing what happened. Consumer errors are
            reported here, never raised.
        """
        try:
            resolved = Category.parse(category)
        except UnknownCategoryError:
            logger.warning(f"Cannot flush unknown category '{category}'")
            return FlushResult(category, FlushStatus.UNKNOWN_CATEGORY)

        buffer = self._buffers.get(resolved)
        if buffer is None:
            logger.warning(f"Cannot flush unconfigured category '{resolved}'")
            return FlushResult(resolved, FlushStatus.UNKNOWN_CATEGORY)

        buffer.cancel_timer()

        async with buffer.lock:
            buffer.flush_queued = False
            buffer.cancel_timer()

            if len(buffer) == 0:
                return FlushResult(resolved, FlushStatus.EMPTY)

            consumer = self._consumers.get(resolved)
            if consumer is None:
                logger.warning(
                    f"No consumer registered for '{resolved}', {len(buffer)} items stay buffered"
                )
                return FlushResult(resolved, FlushStatus.NO_CONSUMER, items=len(buffer))

            return await self._deliver(resolved, buffer, consumer, buffer.detach_all())

    async def _flush_ready(self, category: Category) -> FlushResult:
        """Deliver the oldest batch cut at the size threshold."""
        buffer = self._buffers[category]

        async with buffer.lock:
            batch = buffer.take_ready()
            if batch is None:
                # An explicit flush or a failed delivery got to it first
                return FlushResult(category, FlushStatus.EMPTY)

            consumer = self._consumers.get(category)
            if consumer is None:
                buffer.requeue(batch)
                logger.warning(
                    f"No consumer registered for '{category}', {len(buffer)} items stay buffered"
                )
                return FlushResult(category, FlushStatus.NO_CONSUMER, items=len(buffer))

            return await self._deliver(category, buffer, consumer, [batch])

    async def _deliver(
        self,
        category: Category,
        buffer: BatchBuffer,
        consumer: Consumer,
        batches: List[List[BufferedItem]],
    ) -> FlushResult:
        """Call the consumer once per batch, stopping at the first failure."""
        delivered = 0
        total_elapsed = 0.0

        for index, batch in enumerate(batches):
            logger.info(f"Processing batch of {len(batch)} items for '{category}'")

            start = time.perf_counter()
            try:
                result = consumer([item.payload for item in batch])
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                elapsed = time.perf_counter() - start
                untouched = [item for later in batches[index + 1:] for item in later]
                self._handle_failure(buffer, batch, e, untouched)
                return FlushResult(category, FlushStatus.ERROR, len(batch), elapsed, error=e)

            elapsed = time.perf_counter() - start
            self._total_processed += len(batch)
            self._batches_processed += 1
            self._last_flush = datetime.now(timezone.utc).isoformat()
            if self._metrics is not None:
                self._metrics.record_batch(len(batch), elapsed)
            logger.debug(f"Batch for '{category}' processed in {elapsed * 1000:.1f}ms")

            delivered += len(batch)
            total_elapsed += elapsed

        # Items that arrived while the consumer ran still need a trigger
        if buffer.open_depth and not buffer.flush_queued:
            if buffer.is_full:
                self._request_flush(category)
            else:
                buffer.arm_timer(buffer.flush_interval, self._request_flush)

        return FlushResult(category, FlushStatus.SUCCESS, delivered, total_elapsed)

    def _handle_failure(
        self,
        buffer: BatchBuffer,
        batch: List[BufferedItem],
        error: Exception,
        untouched: List[BufferedItem],
    ) -> None:
        self._errors += 1
        if self._metrics is not None:
            self._metrics.record_error()

        logger.error(
            f"Consumer for '{buffer.category}' failed on a batch of {len(batch)} items: {error}",
            exc_info=error,
        )

        for item in batch:
            item.attempts += 1

        max_retries = self._config.max_retries
        if max_retries is None:
            retry = batch
        else:
            retry = [item for item in batch if item.attempts < max_retries]
            dead = [item for item in batch if item.attempts >= max_retries]
            for item in dead:
                self._dead_letters.append(DeadLetter(buffer.category, item.payload, item.attempts))
            if dead:
                logger.warning(
                    f"{len(dead)} items of '{buffer.category}' dead-lettered after {max_retries} attempts"
                )

        # Batches after the failed one were never attempted; they keep their place
        buffer.requeue(retry + untouched)
        if len(buffer) and not buffer.flush_queued:
            buffer.arm_timer(self._config.retry_delay_seconds, self._request_flush)

    async def flush_all(self) -> Dict[Category, FlushResult]:
        """
        Flush every category independently.

        A failing category never keeps the others from flushing.
        """
        categories = list(self._buffers.keys())
        outcomes = await asyncio.gather(
            *(self.flush(category) for category in categories),
            return_exceptions=True,
        )

        results: Dict[Category, FlushResult] = {}
        for category, outcome in zip(categories, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Flush of '{category}' raised unexpectedly: {outcome}", exc_info=outcome)
                outcome = FlushResult(category, FlushStatus.ERROR, error=outcome)
            results[category] = outcome

        logger.debug(f"Flushed all buffers: {self.stats()}")
        return results

    async def flush_stale(self, stale_after: Optional[float] = None) -> Dict[Category, FlushResult]:
        """
        Force-flush categories whose oldest pending item is older than `stale_after` seconds.
        """
        if stale_after is None:
            stale_after = self._config.stale_after_seconds

        now = self._clock()
        stale = [
            category for category, buffer in self._buffers.items()
            if (buffer.oldest_age(now) or 0.0) > stale_after
        ]
        if not stale:
            return {}

        logger.info(f"Force-flushing stale buffers: {[c.value for c in stale]}")
        outcomes = await asyncio.gather(*(self.flush(category) for category in stale))
        return dict(zip(stale, outcomes))

    async def drain(self) -> None:
        """Wait until every scheduled flush task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ======================================
    # Lifecycle
    # ======================================
    def start_periodic_flush(self, interval: Optional[float] = None) -> None:
        """Run flush_stale() every `interval` seconds on the running loop."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        if interval is None:
            interval = self._config.periodic_flush_seconds
        self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_loop(interval))
        logger.info(f"Periodic stale flush started (interval={interval}s, instance={self.instance_id})")

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.flush_stale()

    async def stop(self) -> Dict[Category, FlushResult]:
        """
        Cancel timers and periodic work, then flush everything.

        Items whose final flush fails stay buffered; no retry timer
        outlives the call.
        """
        logger.info(f"Stopping batch coordinator (instance={self.instance_id})")

        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

        for buffer in self._buffers.values():
            buffer.cancel_timer()

        await self.drain()
        results = await self.flush_all()
        await self.drain()

        # Failed flushes above re-arm retry timers
        for buffer in self._buffers.values():
            buffer.cancel_timer()

        leftover = sum(len(buffer) for buffer in self._buffers.values())
        if leftover:
            logger.warning(f"Batch coordinator stopped with {leftover} items still buffered")
        logger.info(f"Batch coordinator stopped: {self.stats()}")
        return results

    def clear(self) -> int:
        """Drop every pending item. Returns how many were dropped."""
        dropped = sum(buffer.clear() for buffer in self._buffers.values())
        logger.info(f"All buffers cleared ({dropped} items dropped)")
        return dropped

    # ======================================
    # Inspection
    # ======================================
    def buffer_depths(self) -> Dict[str, int]:
        return {category.value: len(buffer) for category, buffer in self._buffers.items()}

    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead_letters)

    def drain_dead_letters(self) -> List[DeadLetter]:
        letters, self._dead_letters = self._dead_letters, []
        return letters

    def stats(self) -> Dict[str, Any]:
        return {
            "total_processed": self._total_processed,
            "batches_processed": self._batches_processed,
            "errors": self._errors,
            "last_flush": self._last_flush,
            "buffer_depths": self.buffer_depths(),
            "dead_letters": len(self._dead_letters),
            "instance_id": self.instance_id,
        }
