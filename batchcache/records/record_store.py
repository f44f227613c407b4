# ==============================================
# RecordStore: Orchestrator
# ==============================================
#
# PURPOSE:
#   The class producers talk to. Ties the other topics together:
#   items go in through add_*(), are batched by the coordinator,
#   normalized by this store's consumers, kept in one authoritative
#   map per category and mirrored into the shared cache.
#
# HOW IT CONNECTS THE TOPICS:
#
#   add_message(item)
#        │
#        ▼
#   BatchCoordinator.add("messages", item)          (buffering/)
#        │ size or time trigger
#        ▼
#   RecordStore._consume(category, batch)
#        │  RecordNormalizer.normalize()            (records/)
#        │  → authoritative map[category][key]
#        │  → ExpiringCache.set(prefix + key, ttl)  (caching/)
#        │  → derived chat summary (messages, groups)
#        ▼
#   RecordSink.write_batch()  in a worker thread    (storage/)
#
#   MetricsCollector observes flush sizes/latency   (monitoring/)
#
# CLASS: RecordStore
# ------------------
#   Constructor:
#   ------------
#   - __init__(config=None, cache=None, coordinator=None,
#              metrics=None, sinks=None, normalizer=None, clock=time.time)
#       Every collaborator can be injected; missing ones are built
#       from the config. One consumer is registered per category.
#
#   Public Methods:
#   ---------------
#   - add_message / add_chat / add_group / add_contact /
#     add_receipt / add_reaction(item) -> bool
#   - add(category, item) -> bool
#   - get(category, record_id) -> NormalizedRecord | None
#       Cache first, then the authoritative map. A map hit puts the
#       record back into the cache when repopulate_cache_on_miss is set.
#   - get_message(remote_jid, message_id) / get_chat / get_group / get_contact
#   - cleanup_old_data(now=None) -> int
#       Drop event records (messages, receipts, reactions) older
#       than retention.max_age_seconds.
#   - flush() -> dict[Category, FlushResult]
#   - start() / stop()      periodic maintenance tasks
#   - clear() / stats() / get_metrics()
#
# ==============================================

import asyncio
import logging
import time
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from batchcache.buffering.batch_coordinator import BatchCoordinator, FlushResult
from batchcache.caching.expiring_cache import ExpiringCache
from batchcache.categories import Category
from batchcache.config import AppConfig
from batchcache.exceptions import RecordNormalizationError, SinkError
from batchcache.monitoring.metrics_collector import MetricsCollector, MetricsSnapshot
from batchcache.records.record_normalizer import CACHE_PREFIXES, NormalizedRecord, RecordNormalizer
from batchcache.storage.base import RecordSink

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Keyed in-memory records fed by batched, per-category consumers.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        cache: Optional[ExpiringCache] = None,
        coordinator: Optional[BatchCoordinator] = None,
        metrics: Optional[MetricsCollector] = None,
        sinks: Optional[Iterable[RecordSink]] = None,
        normalizer: Optional[RecordNormalizer] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Wire the cache, coordinator and metrics together.

        Args:
            config: Application configuration. Defaults to AppConfig().
            cache: Shared cache. Built from config.cache if omitted.
            coordinator: Batch coordinator. Built from config.batch if omitted.
            metrics: Metrics collector. Built from config.metrics if omitted.
            sinks: Downstream sinks receiving every normalized batch.
            normalizer: Per-category item normalizer.
            clock: Wall-clock source (epoch seconds) used for retention.
        """
        self._config = config or AppConfig()
        instance_id = self._config.instance_id
        self._clock = clock

        self._metrics = metrics or MetricsCollector(
            instance_id=instance_id,
            report_interval=self._config.metrics.report_interval_seconds,
        )
        self._cache = cache or ExpiringCache.from_config(self._config.cache, instance_id=instance_id)
        self._coordinator = coordinator or BatchCoordinator(
            self._config.batch, metrics=self._metrics, instance_id=instance_id
        )
        self._normalizer = normalizer or RecordNormalizer(clock=clock)
        self._sinks: List[RecordSink] = list(sinks or [])

        self._records: Dict[Category, Dict[str, NormalizedRecord]] = {c: {} for c in Category}
        self._processed: Dict[Category, int] = {c: 0 for c in Category}
        self._rejected: Dict[Category, int] = {c: 0 for c in Category}
        self._retention_task: Optional[asyncio.Task] = None
        self._started = False
        self._started_at = time.monotonic()

        self._metrics.bind(cache=self._cache, buffer_depths=self._coordinator.buffer_depths)
        for category in self._coordinator.categories:
            self._coordinator.register_consumer(category, partial(self._consume, category))

        logger.info(
            f"Record store initialized (instance={instance_id}, "
            f"categories={[c.value for c in self._coordinator.categories]}, sinks={len(self._sinks)})"
        )

    @property
    def cache(self) -> ExpiringCache:
        return self._cache

    @property
    def coordinator(self) -> BatchCoordinator:
        return self._coordinator

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # ======================================
    # Ingestion
    # ======================================
    def add(self, category: Union[Category, str], item: Any) -> bool:
        return self._coordinator.add(category, item)

    def add_message(self, item: Any) -> bool:
        return self._coordinator.add(Category.MESSAGES, item)

    def add_chat(self, item: Any) -> bool:
        return self._coordinator.add(Category.CHATS, item)

    def add_group(self, item: Any) -> bool:
        return self._coordinator.add(Category.GROUPS, item)

    def add_contact(self, item: Any) -> bool:
        return self._coordinator.add(Category.CONTACTS, item)

    def add_receipt(self, item: Any) -> bool:
        return self._coordinator.add(Category.RECEIPTS, item)

    def add_reaction(self, item: Any) -> bool:
        return self._coordinator.add(Category.REACTIONS, item)

    # ======================================
    # Consumers
    # ======================================
    async def _consume(self, category: Category, items: List[Any]) -> None:
        """
        Normalize and store one flushed batch.

        Malformed items are logged and counted as rejected; the rest of
        the batch is still stored. Sink failures propagate so the
        coordinator requeues the batch.
        """
        records: List[NormalizedRecord] = []
        derived: Dict[str, NormalizedRecord] = {}

        for item in items:
            try:
                record = self._normalizer.normalize(category, item)
            except RecordNormalizationError as e:
                self._rejected[category] += 1
                logger.warning(f"Rejected {category} item: {e}")
                continue

            is_new = record.key not in self._records[category]
            self._store(record)
            records.append(record)

            if category is Category.MESSAGES:
                chat_id = record.data["remote_jid"]
                if is_new:
                    chat = self._normalizer.chat_from_message(
                        self._current_data(Category.CHATS, chat_id), record
                    )
                    self._store(chat)
                else:
                    # Redelivery: the unread count already includes this message
                    chat = self._records[Category.CHATS].get(chat_id)
                if chat is not None:
                    derived[chat.key] = chat
            elif category is Category.GROUPS:
                chat = self._normalizer.chat_from_group(
                    self._current_data(Category.CHATS, record.key), record
                )
                self._store(chat)
                derived[chat.key] = chat

        self._processed[category] += len(records)
        logger.debug(f"Stored {len(records)} {category} records ({len(derived)} chat summaries updated)")

        if records:
            await self._write_to_sinks(category, records)
        if derived:
            await self._write_to_sinks(Category.CHATS, list(derived.values()))

    def _store(self, record: NormalizedRecord) -> None:
        self._records[record.category][record.key] = record
        self._cache.set(record.cache_key, record, self._ttl_for(record.category))

    def _current_data(self, category: Category, record_id: str) -> Optional[dict]:
        record = self._records[category].get(record_id)
        return dict(record.data) if record is not None else None

    def _ttl_for(self, category: Category) -> float:
        settings = self._config.batch.categories.get(category)
        if settings is None:
            return self._config.cache.default_ttl_seconds
        return settings.cache_ttl_seconds

    async def _write_to_sinks(self, category: Category, records: List[NormalizedRecord]) -> None:
        for sink in self._sinks:
            try:
                written = await asyncio.to_thread(sink.write_batch, category, records)
            except SinkError:
                raise
            except Exception as e:
                raise SinkError(type(sink).__name__, str(e)) from e
            logger.debug(f"{type(sink).__name__} wrote {written} {category} records")

    # ======================================
    # Lookup
    # ======================================
    def get(self, category: Union[Category, str], record_id: str) -> Optional[NormalizedRecord]:
        category = Category.parse(category)
        cache_key = f"{CACHE_PREFIXES[category]}{record_id}"

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        record = self._records[category].get(record_id)
        if record is not None and self._config.retention.repopulate_cache_on_miss:
            self._cache.set(cache_key, record, self._ttl_for(category))
        return record

    def get_message(self, remote_jid: str, message_id: str) -> Optional[NormalizedRecord]:
        return self.get(Category.MESSAGES, f"{remote_jid}:{message_id}")

    def get_chat(self, chat_id: str) -> Optional[NormalizedRecord]:
        return self.get(Category.CHATS, chat_id)

    def get_group(self, group_id: str) -> Optional[NormalizedRecord]:
        return self.get(Category.GROUPS, group_id)

    def get_contact(self, contact_id: str) -> Optional[NormalizedRecord]:
        return self.get(Category.CONTACTS, contact_id)

    def records(self, category: Union[Category, str]) -> List[NormalizedRecord]:
        return list(self._records[Category.parse(category)].values())

    # ======================================
    # Retention
    # ======================================
    def cleanup_old_data(self, now: Optional[float] = None) -> int:
        """
        Remove event records older than the retention bound.

        Age is measured from the record's own timestamp when it has one,
        otherwise from when it was processed.

        Returns:
            Number of records removed
        """
        if now is None:
            now = self._clock()
        cutoff = now - self._config.retention.max_age_seconds

        removed = 0
        for category in Category:
            if not category.is_event:
                continue
            records = self._records[category]
            expired = [key for key, record in records.items() if self._record_time(record) < cutoff]
            for key in expired:
                record = records.pop(key)
                self._cache.delete(record.cache_key)
            removed += len(expired)

        if removed:
            logger.info(f"Retention sweep removed {removed} records older than {cutoff:.0f}")
        return removed

    @staticmethod
    def _record_time(record: NormalizedRecord) -> float:
        timestamp = record.data.get("message_timestamp") or record.data.get("timestamp")
        return timestamp if timestamp else record.processed_at

    async def _retention_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup_old_data()

    # ======================================
    # Lifecycle
    # ======================================
    async def start(self) -> None:
        """Start cache cleanup, stale flush, retention sweep and metrics reporting."""
        if self._started:
            return

        self._cache.start_auto_cleanup(self._config.cache.cleanup_interval_seconds)
        self._coordinator.start_periodic_flush(self._config.batch.periodic_flush_seconds)
        self._retention_task = asyncio.get_running_loop().create_task(
            self._retention_loop(self._config.retention.sweep_interval_seconds)
        )
        if self._config.metrics.enabled:
            self._metrics.start()

        self._started = True
        logger.info(f"Record store started (instance={self._config.instance_id})")

    async def stop(self) -> Dict[Category, FlushResult]:
        """Stop periodic work and flush every pending item."""
        if self._retention_task is not None:
            self._retention_task.cancel()
            self._retention_task = None
        self._cache.stop_auto_cleanup()

        results = await self._coordinator.stop()

        if self._started and self._config.metrics.enabled:
            self._metrics.stop()
        self._started = False

        logger.info(f"Record store stopped: {self.stats()}")
        return results

    async def flush(self) -> Dict[Category, FlushResult]:
        return await self._coordinator.flush_all()

    def clear(self) -> None:
        """Drop pending items, stored records and cached entries."""
        self._coordinator.clear()
        for records in self._records.values():
            records.clear()
        self._cache.clear()

    async def __aenter__(self) -> "RecordStore":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # ======================================
    # Inspection
    # ======================================
    def stats(self) -> Dict[str, Any]:
        return {
            "instance_id": self._config.instance_id,
            "uptime_seconds": round(time.monotonic() - self._started_at, 3),
            "records": {c.value: len(records) for c, records in self._records.items()},
            "processed": {c.value: n for c, n in self._processed.items()},
            "rejected": {c.value: n for c, n in self._rejected.items()},
            "cache": self._cache.stats().to_dict(),
            "batch": self._coordinator.stats(),
        }

    def get_metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot()
