# ==============================================
# MongoSink
# ==============================================
#
# PURPOSE:
#   Persists every normalized record as a document, one collection
#   per category (messages, chats, groups, contacts, receipts,
#   reactions). Nested structure (raw message content, participant
#   lists, message keys) is kept as-is.
#
# KEYING:
#   Each document carries "record_key" (the record's composite
#   identity). Writes are upserts filtered on record_key, so a
#   redelivered batch replaces documents instead of duplicating them.
#
# CLASS: MongoSink
# ----------------
#   - connect() / disconnect() / close()
#   - ensure_indexes(collection_name) -> None
#       Unique index on record_key, plain index on processed_at.
#   - write_batch(category, records) -> int
#   - find(collection_name, query) -> list[dict]
#   - __enter__ / __exit__
#
# ==============================================

import logging
import threading
from typing import Any, Sequence, Set

from pymongo import MongoClient as PyMongoClient
from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from batchcache.categories import Category
from batchcache.config import MongoConfig
from batchcache.exceptions import SinkError

logger = logging.getLogger(__name__)


class MongoSink:
    def __init__(self, host, port, database, user=None, password=None, client_factory=PyMongoClient):
        # Store connection params. Don't connect yet.
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.client = None
        self._client_factory = client_factory
        self._indexed: Set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: MongoConfig, **kwargs) -> "MongoSink":
        return cls(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
            **kwargs,
        )

    @property
    def uri(self) -> str:
        if self.user and self.password:
            return f"mongodb://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
        return f"mongodb://{self.host}:{self.port}/{self.database}"

    def connect(self) -> None:
        self.client = self._client_factory(self.uri)
        # Fail fast instead of on the first write
        self.client.admin.command("ping")
        logger.info(f"Connected to MongoDB at {self.host}:{self.port}/{self.database}")

    def disconnect(self) -> None:
        if self.client:
            self.client.close()
            self.client = None
            self._indexed.clear()
            logger.info("Disconnected from MongoDB")

    def close(self) -> None:
        self.disconnect()

    def ensure_indexes(self, collection_name: str) -> None:
        collection = self.client[self.database][collection_name]
        collection.create_index("record_key", unique=True)
        collection.create_index("processed_at")
        self._indexed.add(collection_name)

    def write_batch(self, category: Category, records: Sequence[Any]) -> int:
        """
        Upsert a batch of normalized records into the category's collection.

        Raises:
            SinkError: connection or write failure
        """
        if not records:
            return 0
        collection_name = category.value
        operations = [
            UpdateOne({"record_key": record.key}, {"$set": record.to_dict()}, upsert=True)
            for record in records
        ]

        with self._lock:
            try:
                if self.client is None:
                    self.connect()
                if collection_name not in self._indexed:
                    self.ensure_indexes(collection_name)
                collection = self.client[self.database][collection_name]
                result = collection.bulk_write(operations, ordered=False)
            except PyMongoError as e:
                raise SinkError("mongo", f"upsert into {collection_name} failed: {e}") from e

        written = result.upserted_count + result.matched_count
        logger.debug(f"Upserted {written} documents into MongoDB collection '{collection_name}'")
        return written

    def find(self, collection_name: str, query: dict) -> list:
        if self.client is None:
            self.connect()
        return list(self.client[self.database][collection_name].find(query))

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
