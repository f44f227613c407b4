"""
Per-category pending sequence for the batch coordinator.

A BatchBuffer only holds state: the ordered pending items, batches cut
at the size threshold that wait for their consumer call, the single
deferred-flush timer, and the flags that serialise flushes. Deciding
when to flush and calling the consumer is BatchCoordinator's job.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional

from batchcache.categories import Category

logger = logging.getLogger(__name__)


@dataclass
class BufferedItem:
    """An opaque item plus the time it entered the buffer."""

    payload: Any
    ingested_at: float
    attempts: int = 0


class BatchBuffer:
    """
    Ordered pending items for one category.

    Items live in two places, oldest first: batches already cut at the
    size threshold (``ready``) and the open sequence new items append to.

    Attributes:
        category: Category this buffer belongs to
        batch_size: Length at which the coordinator flushes immediately
        flush_interval: Delay of the deferred flush, in seconds
        lock: Serialises flushes of this category
        flush_queued: True while a flush task is scheduled but has not
            yet taken the lock
    """

    def __init__(self, category: Category, batch_size: int, flush_interval: float):
        self.category = category
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self.lock = asyncio.Lock()
        self.flush_queued = False

        self._items: List[BufferedItem] = []
        self._ready: Deque[List[BufferedItem]] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None

    def append(self, item: BufferedItem) -> int:
        """Append an item and return the length of the open sequence."""
        self._items.append(item)
        return len(self._items)

    def detach(self) -> List[BufferedItem]:
        """
        Swap the open sequence for an empty one.

        Items added after this call land in the fresh sequence, so a
        consumer working on the returned batch never races with them.
        """
        batch, self._items = self._items, []
        return batch

    def cut(self) -> None:
        """Detach the open sequence into the ready queue."""
        self._ready.append(self.detach())

    def take_ready(self) -> Optional[List[BufferedItem]]:
        """Oldest batch cut at the size threshold, or None."""
        return self._ready.popleft() if self._ready else None

    def detach_all(self) -> List[List[BufferedItem]]:
        """Every ready batch followed by the open sequence, oldest first."""
        batches = list(self._ready)
        self._ready.clear()
        if self._items:
            batches.append(self.detach())
        return batches

    def requeue(self, batch: List[BufferedItem]) -> None:
        """
        Put a failed batch back in front of everything still pending.

        Ready batches are newer than `batch`, so they are folded back
        into the open sequence behind it.
        """
        newer = [item for ready in self._ready for item in ready]
        self._ready.clear()
        self._items[:0] = batch + newer

    def oldest_age(self, now: float) -> Optional[float]:
        oldest = self._ready[0] if self._ready else self._items
        if not oldest:
            return None
        return now - oldest[0].ingested_at

    @property
    def open_depth(self) -> int:
        return len(self._items)

    @property
    def has_ready(self) -> bool:
        return bool(self._ready)

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.batch_size

    # ======================================
    # Deferred flush timer (at most one)
    # ======================================
    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def arm_timer(self, delay: float, callback: Callable[[Category], None]) -> bool:
        """
        Arm the deferred flush unless one is already armed.

        Returns:
            True if a new timer was armed. False if one was already
            pending or no event loop is running.
        """
        if self._timer is not None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._timer = loop.call_later(delay, self._fire, callback)
        return True

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, callback: Callable[[Category], None]) -> None:
        self._timer = None
        callback(self.category)

    def clear(self) -> int:
        """Drop pending items and the timer. Returns the number dropped."""
        self.cancel_timer()
        dropped = len(self)
        self._items = []
        self._ready.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._items) + sum(len(batch) for batch in self._ready)

    def __repr__(self) -> str:
        return (
            f"BatchBuffer(category={self.category.value!r}, depth={len(self)}, "
            f"ready={len(self._ready)}, batch_size={self.batch_size}, "
            f"timer_armed={self.timer_armed})"
        )
