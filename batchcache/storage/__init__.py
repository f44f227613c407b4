# ==============================================
# TOPIC 5: STORAGE (MySQL + MongoDB)
# ==============================================
#
# Optional downstream sinks. The record store hands every
# normalized batch to each registered sink after updating memory.
#
# Modules:
# --------
# - base.py          → RecordSink protocol
# - mysql_client.py  → MySQLSink (fixed schema, upserts)
# - mongo_client.py  → MongoSink (one collection per category)
#
# ==============================================

from .base import RecordSink
from .mysql_client import MySQLSink
from .mongo_client import MongoSink

__all__ = ["RecordSink", "MySQLSink", "MongoSink"]
