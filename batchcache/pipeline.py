"""
==============================================
Streaming Pipeline
==============================================

Pulls events from an HTTP event source and feeds them into a
RecordStore, which batches, normalizes and caches them.

An event is a JSON object naming its category and carrying one item
(or a list of items):

    {"type": "messages", "data": {"key": {...}, "message": {...}}}
    {"type": "contacts", "data": [{"id": "..."}, {"id": "..."}]}

USAGE EXAMPLES:

1. Stream a fixed number of events:
    from batchcache.pipeline import StreamingPipeline

    async with StreamingPipeline() as pipeline:
        summary = await pipeline.start_streaming(max_events=100)

2. Feed events you already have:
    pipeline = StreamingPipeline()
    pipeline.ingest({"type": "chats", "data": {"id": "123@s.whatsapp.net"}})
    await pipeline.flush()

3. Check pipeline status:
    print(pipeline.get_status())
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import requests

from batchcache.categories import Category
from batchcache.config import AppConfig, load_config
from batchcache.exceptions import UnknownCategoryError
from batchcache.records.record_store import RecordStore
from batchcache.storage.base import RecordSink
from batchcache.storage.mongo_client import MongoSink
from batchcache.storage.mysql_client import MySQLSink

logger = logging.getLogger(__name__)


def build_sinks(config: AppConfig) -> List[RecordSink]:
    """Create the sinks enabled in the configuration."""
    sinks: List[RecordSink] = []
    if config.mysql.enabled:
        sinks.append(MySQLSink.from_config(config.mysql))
    if config.mongo.enabled:
        sinks.append(MongoSink.from_config(config.mongo))
    return sinks


class StreamingPipeline:
    """
    Wraps a RecordStore with an HTTP polling loop.
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        store: Optional[RecordStore] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the streaming pipeline.

        Args:
            config: Optional configuration. If None, loads from environment.
            store: Record store to feed. Built from config (with its sinks) if None.
            session: HTTP session used to poll the event source.
        """
        self._config = config or load_config()
        self._sinks = [] if store is not None else build_sinks(self._config)
        self._store = store or RecordStore(self._config, sinks=self._sinks)
        self._session = session or requests.Session()

        self._is_running = False
        self._events_ingested = 0
        self._events_rejected = 0
        self._fetch_errors = 0

    @property
    def store(self) -> RecordStore:
        return self._store

    # ======================================
    # Ingestion
    # ======================================
    def ingest(self, event: Any) -> int:
        """
        Dispatch one event to the record store.

        Returns:
            Number of items accepted (0 for a malformed event)
        """
        if not isinstance(event, dict) or "type" not in event:
            self._events_rejected += 1
            logger.warning(f"Malformed event dropped: {event!r:.200}")
            return 0

        try:
            category = Category.parse(event["type"])
        except UnknownCategoryError:
            self._events_rejected += 1
            logger.warning(f"Event with unknown type '{event['type']}' dropped")
            return 0

        data = event.get("data")
        items = data if isinstance(data, list) else [data]
        accepted = sum(1 for item in items if item is not None and self._store.add(category, item))

        self._events_ingested += 1
        return accepted

    def ingest_batch(self, events: Iterable[Any]) -> int:
        return sum(self.ingest(event) for event in events)

    async def fetch_event(self) -> Optional[dict]:
        """Fetch one event from the data stream without blocking the loop."""
        return await asyncio.to_thread(self._fetch_event)

    def _fetch_event(self) -> Optional[dict]:
        try:
            response = self._session.get(self._config.data_stream_url, timeout=5)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            self._fetch_errors += 1
            logger.warning(f"Failed to fetch event from {self._config.data_stream_url}: {e}")
            return None

    # ======================================
    # Streaming loop
    # ======================================
    async def start_streaming(
        self,
        max_events: Optional[int] = None,
        interval_seconds: float = 0.1,
    ) -> Dict[str, Any]:
        """
        Poll the data source until stopped, then flush everything.

        Args:
            max_events: Stop after this many events (None = until stop_streaming())
            interval_seconds: Delay between fetches

        Returns:
            Summary statistics
        """
        logger.info(f"Starting streaming ingestion from {self._config.data_stream_url}")
        await self._store.start()

        self._is_running = True
        consecutive_errors = 0
        events_at_start = self._events_ingested
        start_time = time.time()

        try:
            while self._is_running:
                if max_events is not None and self._events_ingested - events_at_start >= max_events:
                    logger.info(f"Reached target of {max_events} events")
                    break

                event = await self.fetch_event()
                if event is None:
                    consecutive_errors += 1
                    if consecutive_errors > self.MAX_CONSECUTIVE_ERRORS:
                        logger.error("Too many consecutive fetch errors, stopping stream")
                        break
                else:
                    consecutive_errors = 0
                    self.ingest(event)

                await asyncio.sleep(interval_seconds)
        finally:
            self._is_running = False
            flush_results = await self._store.stop()

        elapsed = time.time() - start_time
        ingested = self._events_ingested - events_at_start
        return {
            "events_ingested": ingested,
            "events_rejected": self._events_rejected,
            "fetch_errors": self._fetch_errors,
            "elapsed_seconds": round(elapsed, 2),
            "events_per_second": round(ingested / elapsed, 2) if elapsed > 0 else 0,
            "final_flush": {c.value: r.status.value for c, r in flush_results.items()},
        }

    def stop_streaming(self) -> None:
        """Stop the streaming loop after the current fetch."""
        self._is_running = False

    async def flush(self):
        return await self._store.flush()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "events_ingested": self._events_ingested,
            "events_rejected": self._events_rejected,
            "fetch_errors": self._fetch_errors,
            "data_stream_url": self._config.data_stream_url,
            "store": self._store.stats(),
        }

    def close(self) -> None:
        """Close sinks and the HTTP session."""
        for sink in self._sinks:
            sink.close()
        self._session.close()

    async def __aenter__(self) -> "StreamingPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._store.stop()
        self.close()
