# ==============================================
# TOPIC 2: BUFFERING
# ==============================================
#
# This package accumulates items per category and forwards them
# to registered consumers in batches.
#
# Two flush triggers, whichever fires first:
#   Size:  buffer reaches batch_size  → flush now
#   Time:  flush_interval elapses     → deferred flush
#
# Modules:
# --------
# - batch_buffer.py       → BufferedItem, per-category BatchBuffer
# - batch_coordinator.py  → BatchCoordinator, FlushResult, FlushStatus
#
# ==============================================

from .batch_buffer import BatchBuffer, BufferedItem
from .batch_coordinator import BatchCoordinator, DeadLetter, FlushResult, FlushStatus

__all__ = [
    "BatchBuffer",
    "BufferedItem",
    "BatchCoordinator",
    "DeadLetter",
    "FlushResult",
    "FlushStatus",
]
