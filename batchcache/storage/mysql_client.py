# ==============================================
# MySQLSink
# ==============================================
#
# PURPOSE:
#   Persists normalized records into a fixed relational schema.
#   One table per category (reactions are kept in memory only),
#   written with INSERT ... ON DUPLICATE KEY UPDATE so redelivered
#   batches overwrite instead of duplicating rows.
#
# TABLES:
#   contacts          PK jid
#   chats             PK jid
#   `groups`          PK jid            (reserved word, always quoted)
#   messages          PK (message_id, chat_jid)
#   message_receipts  PK (message_id, chat_jid, recipient_jid, receipt_type)
#   No foreign keys: categories flush independently, so a message
#   can land before its chat row does.
#
# CLASS: MySQLSink
# ----------------
#   Stateful: holds one PyMySQL connection, guarded by a lock because
#   batches of different categories are written from worker threads.
#
#   Methods:
#   --------
#   - connect() -> None         create database if missing, then USE it
#   - disconnect() / close()
#   - ensure_tables() -> None
#   - write_batch(category, records) -> int
#   - __enter__ / __exit__
#
# ==============================================

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Sequence, Tuple

import pymysql

from batchcache.categories import Category
from batchcache.config import MySQLConfig
from batchcache.exceptions import SinkError

logger = logging.getLogger(__name__)


TABLE_DEFINITIONS: Dict[str, str] = {
    "contacts": """
        CREATE TABLE IF NOT EXISTS `contacts` (
            jid VARCHAR(255) PRIMARY KEY,
            name VARCHAR(255),
            push_name VARCHAR(255),
            verified_name VARCHAR(255),
            status TEXT,
            img_url TEXT,
            updated_at BIGINT
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
    """,
    "chats": """
        CREATE TABLE IF NOT EXISTS `chats` (
            jid VARCHAR(255) PRIMARY KEY,
            name VARCHAR(255),
            unread_count INT DEFAULT 0,
            last_message_timestamp BIGINT,
            is_group BOOLEAN DEFAULT 0,
            pinned_timestamp BIGINT DEFAULT 0,
            archived BOOLEAN DEFAULT 0,
            muted BOOLEAN DEFAULT 0,
            updated_at BIGINT
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
    """,
    "groups": """
        CREATE TABLE IF NOT EXISTS `groups` (
            jid VARCHAR(255) PRIMARY KEY,
            subject VARCHAR(255),
            owner_jid VARCHAR(255),
            creation_timestamp BIGINT,
            description TEXT,
            participant_count INT DEFAULT 0,
            restrict_mode BOOLEAN DEFAULT 0,
            announce_mode BOOLEAN DEFAULT 0,
            img_url TEXT,
            updated_at BIGINT
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
    """,
    "messages": """
        CREATE TABLE IF NOT EXISTS `messages` (
            message_id VARCHAR(191) NOT NULL,
            chat_jid VARCHAR(191) NOT NULL,
            sender_jid VARCHAR(255),
            from_me BOOLEAN NOT NULL,
            message_timestamp BIGINT NOT NULL,
            push_name VARCHAR(255),
            message_type VARCHAR(50),
            text_content TEXT,
            raw_message_content JSON,
            updated_at BIGINT,
            PRIMARY KEY (message_id, chat_jid),
            INDEX idx_messages_chat_timestamp (chat_jid, message_timestamp)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
    """,
    "message_receipts": """
        CREATE TABLE IF NOT EXISTS `message_receipts` (
            message_id VARCHAR(191) NOT NULL,
            chat_jid VARCHAR(191) NOT NULL,
            recipient_jid VARCHAR(191) NOT NULL,
            receipt_type VARCHAR(50) NOT NULL,
            receipt_timestamp BIGINT NOT NULL,
            PRIMARY KEY (message_id, chat_jid, recipient_jid, receipt_type)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
    """,
}


def _contact_row(record) -> Dict[str, Any]:
    data = record.data
    return {
        "jid": record.key,
        "name": data.get("name"),
        "push_name": data.get("notify"),
        "verified_name": data.get("verified_name"),
        "status": data.get("status"),
        "img_url": data.get("profile_picture_url"),
        "updated_at": int(record.processed_at),
    }


def _chat_row(record) -> Dict[str, Any]:
    data = record.data
    return {
        "jid": record.key,
        "name": data.get("name"),
        "unread_count": data.get("unread_count") or 0,
        "last_message_timestamp": data.get("last_message_timestamp"),
        "is_group": bool(data.get("is_group")),
        "pinned_timestamp": data.get("pinned") or 0,
        "archived": bool(data.get("archived")),
        "muted": bool(data.get("muted")),
        "updated_at": int(record.processed_at),
    }


def _group_row(record) -> Dict[str, Any]:
    data = record.data
    return {
        "jid": record.key,
        "subject": data.get("subject"),
        "owner_jid": data.get("owner"),
        "creation_timestamp": data.get("creation"),
        "description": data.get("description"),
        "participant_count": data.get("participant_count") or 0,
        "restrict_mode": bool(data.get("restrict")),
        "announce_mode": bool(data.get("announce")),
        "img_url": data.get("profile_picture_url"),
        "updated_at": int(record.processed_at),
    }


def _message_row(record) -> Dict[str, Any]:
    data = record.data
    return {
        "message_id": data["message_id"],
        "chat_jid": data["remote_jid"],
        "sender_jid": data.get("participant") or data["remote_jid"],
        "from_me": bool(data.get("from_me")),
        "message_timestamp": data.get("message_timestamp") or int(record.processed_at),
        "push_name": data.get("push_name"),
        "message_type": data.get("message_type"),
        "text_content": data.get("text"),
        "raw_message_content": json.dumps(data.get("message"), default=str),
        "updated_at": int(record.processed_at),
    }


def _receipt_row(record) -> Dict[str, Any]:
    data = record.data
    return {
        "message_id": data["message_id"],
        "chat_jid": data["remote_jid"],
        "recipient_jid": data["user_jid"],
        "receipt_type": data["type"],
        "receipt_timestamp": data.get("timestamp") or int(record.processed_at),
    }


# category → (table, primary key columns, row builder)
TABLES: Dict[Category, Tuple[str, Tuple[str, ...], Callable[[Any], Dict[str, Any]]]] = {
    Category.CONTACTS: ("contacts", ("jid",), _contact_row),
    Category.CHATS: ("chats", ("jid",), _chat_row),
    Category.GROUPS: ("groups", ("jid",), _group_row),
    Category.MESSAGES: ("messages", ("message_id", "chat_jid"), _message_row),
    Category.RECEIPTS: (
        "message_receipts",
        ("message_id", "chat_jid", "recipient_jid", "receipt_type"),
        _receipt_row,
    ),
}


class MySQLSink:
    def __init__(self, host, port, user, password, database):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.connection = None
        self._tables_ready = False
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: MySQLConfig) -> "MySQLSink":
        return cls(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            database=config.database,
        )

    def connect(self) -> None:
        # Establish connection to MySQL, create database if it doesn't exist
        self.connection = pymysql.connect(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            charset="utf8mb4",
        )
        with self.connection.cursor() as cursor:
            cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{self.database}`")
            cursor.execute(f"USE `{self.database}`")
        logger.info(f"Connected to MySQL at {self.host}:{self.port}/{self.database}")

    def disconnect(self) -> None:
        if self.connection:
            self.connection.close()
            self.connection = None
            self._tables_ready = False

    def close(self) -> None:
        self.disconnect()

    def ensure_tables(self) -> None:
        """Create every table that does not exist yet."""
        with self.connection.cursor() as cursor:
            for query in TABLE_DEFINITIONS.values():
                cursor.execute(query)
        self.connection.commit()
        self._tables_ready = True
        logger.info(f"MySQL tables verified: {list(TABLE_DEFINITIONS)}")

    def write_batch(self, category: Category, records: Sequence[Any]) -> int:
        """
        Upsert a batch of normalized records.

        Returns:
            Number of rows written (0 for categories without a table)

        Raises:
            SinkError: connection or query failure; the transaction is rolled back
        """
        spec = TABLES.get(category)
        if spec is None or not records:
            return 0
        table, primary_key, build_row = spec
        rows = [build_row(record) for record in records]

        with self._lock:
            try:
                if self.connection is None:
                    self.connect()
                if not self._tables_ready:
                    self.ensure_tables()

                query, values = self._upsert_statement(table, primary_key, rows)
                with self.connection.cursor() as cursor:
                    cursor.executemany(query, values)
                self.connection.commit()
            except pymysql.MySQLError as e:
                if self.connection is not None:
                    self.connection.rollback()
                raise SinkError("mysql", f"upsert into {table} failed: {e}") from e

        logger.debug(f"Upserted {len(rows)} rows into MySQL table '{table}'")
        return len(rows)

    @staticmethod
    def _upsert_statement(
        table: str, primary_key: Tuple[str, ...], rows: List[Dict[str, Any]]
    ) -> Tuple[str, List[tuple]]:
        columns = list(rows[0].keys())
        column_names = ", ".join(columns)
        placeholders = ", ".join(["%s"] * len(columns))
        # Update every column except the primary key itself
        update_clause = ", ".join(
            f"{col} = VALUES({col})" for col in columns if col not in primary_key
        )
        query = (
            f"INSERT INTO `{table}` ({column_names}) "
            f"VALUES ({placeholders}) "
            f"ON DUPLICATE KEY UPDATE {update_clause}"
        )
        values = [tuple(row[col] for col in columns) for row in rows]
        return query, values

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
