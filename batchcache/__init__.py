# ==============================================
# Batch Cache Framework
# ==============================================
#
# Package Structure (5 Topics + Orchestrator):
#
# batchcache/
# ├── caching/        # Topic 1: TTL key/value cache with size-bounded eviction
# ├── buffering/      # Topic 2: Per-category batch buffers + coordinator
# ├── records/        # Topic 3: Normalize flushed batches into keyed records
# ├── monitoring/     # Topic 4: Throughput / latency / memory metrics
# ├── storage/        # Topic 5: Optional downstream sinks (MySQL / MongoDB)
# ├── config.py       # Configuration management
# ├── exceptions.py   # Error taxonomy
# ├── pipeline.py     # Streaming ingestion from an HTTP event source
# └── cli.py          # Command line entry point
#
# ==============================================

__version__ = "0.1.0"
