# ==============================================
# ExpiringCache
# ==============================================
#
# PURPOSE:
#   In-memory key/value store with a per-entry time-to-live and a
#   hard size cap. Hot records are mirrored here so lookups do not
#   have to touch the authoritative record maps.
#
# EXPIRY:
#   An entry expires when ttl > 0 and now - inserted_at > ttl.
#   Three independent paths remove expired entries:
#     1. Lazy expiry   → get() / has() drop the entry on lookup
#     2. Entry timers  → a one-shot loop.call_later per entry
#     3. Sweep         → cleanup(), run on a fixed interval
#   The sweep is the backstop when timers drift, are disabled, or
#   no event loop is running (timers are only armed inside a loop).
#
# EVICTION:
#   When a new key is set at capacity, exactly one entry is evicted:
#   the one with the smallest inserted_at (oldest by insertion, not
#   by last access). This is a linear scan, so set() at capacity is
#   O(n). Fine up to ~10^4 entries; a larger cache wants an ordered
#   index instead.
#
# CLASS: ExpiringCache
# --------------------
#   Constructor:
#   ------------
#   - __init__(default_ttl=300.0, max_size=10000, clock=time.monotonic,
#              use_timers=True, instance_id="default")
#
#   Methods:
#   --------
#   - set(key, value, ttl=None) -> bool
#   - get(key, default=None) -> Any
#   - has(key) -> bool                  (no hit/miss accounting)
#   - delete(key) -> bool               (idempotent)
#   - get_or_set(key, factory, ttl=None) -> Any   (async, no coalescing)
#   - cleanup() -> int                  (number of entries removed)
#   - keys() / clear() / stats()
#   - start_auto_cleanup(interval) / stop_auto_cleanup() / close()
#
# ==============================================

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Hashable, List, Optional

from batchcache.caching.cache_entry import CacheEntry, CacheStats
from batchcache.config import CacheConfig

logger = logging.getLogger(__name__)

_MISSING = object()


class ExpiringCache:
    """
    TTL cache with oldest-insertion eviction under a size cap.

    Not thread-safe: every mutation is expected to run on one event
    loop (or one thread when used without a loop).
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
        use_timers: bool = True,
        instance_id: str = "default",
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")

        self.default_ttl = default_ttl
        self.max_size = max_size
        self.use_timers = use_timers
        self.instance_id = instance_id
        self._clock = clock

        self._entries: Dict[Hashable, CacheEntry] = {}
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

    @classmethod
    def from_config(cls, config: CacheConfig, instance_id: str = "default", **kwargs) -> "ExpiringCache":
        return cls(
            default_ttl=config.default_ttl_seconds,
            max_size=config.max_size,
            use_timers=config.use_timers,
            instance_id=instance_id,
            **kwargs,
        )

    # ======================================
    # Core operations
    # ======================================
    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> bool:
        """
        Store a value, replacing any existing entry for the key.

        Args:
            key: Cache key
            value: Value to store
            ttl: Seconds to live. None uses the default TTL; <= 0 never expires by time.

        Returns:
            True
        """
        if ttl is None:
            ttl = self.default_ttl

        # Replacement is delete-then-insert, never in place
        if key in self._entries:
            self.delete(key)

        if len(self._entries) >= self.max_size:
            self._evict_oldest()

        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=ttl)
        self._sets += 1

        if ttl > 0:
            self._arm_timer(key, ttl)

        logger.debug(f"Cache set: {key} (ttl={ttl}, size={len(self._entries)})")
        return True

    def get(self, key: Hashable, default: Any = None) -> Any:
        """
        Look up a value, lazily expiring it if stale.

        Returns:
            The cached value, or `default` on a miss (absent or expired).
        """
        entry = self._entries.get(key)

        if entry is None:
            self._misses += 1
            logger.debug(f"Cache miss: {key}")
            return default

        if entry.is_expired(self._clock()):
            self.delete(key)
            self._misses += 1
            logger.debug(f"Cache expired: {key}")
            return default

        self._hits += 1
        logger.debug(f"Cache hit: {key}")
        return entry.value

    def has(self, key: Hashable) -> bool:
        """Check for a live entry without touching hit/miss counters."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        if entry.is_expired(self._clock()):
            self.delete(key)
            return False

        return True

    def delete(self, key: Hashable) -> bool:
        """
        Remove an entry and cancel its timer.

        Returns:
            True if an entry existed, False otherwise.
        """
        existed = self._entries.pop(key, None) is not None

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        if existed:
            self._deletes += 1
            logger.debug(f"Cache delete: {key}")

        return existed

    async def get_or_set(self, key: Hashable, factory: Any, ttl: Optional[float] = None) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        `factory` may be a plain value, a callable, or a coroutine
        function. Concurrent misses on the same key each call the
        factory; callers needing single-flight must guard it themselves.

        Raises:
            Whatever the factory raises. The key is left unset.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        try:
            if callable(factory):
                value = factory()
                if inspect.isawaitable(value):
                    value = await value
            else:
                value = factory
        except Exception as e:
            logger.error(f"Failed to compute value for cache key {key}: {e}")
            raise

        self.set(key, value, ttl)
        logger.debug(f"Cache getOrSet computed value: {key}")
        return value

    # ======================================
    # Housekeeping
    # ======================================
    def cleanup(self) -> int:
        """
        Sweep every entry and remove the expired ones.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]

        for key in expired:
            self.delete(key)

        if expired:
            logger.debug(f"Cache cleanup: {len(expired)} entries removed")

        return len(expired)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return

        # min() keeps the first of equal timestamps, i.e. the earliest inserted
        oldest_key = min(self._entries, key=lambda k: self._entries[k].inserted_at)
        self.delete(oldest_key)
        self._evictions += 1
        logger.debug(f"Cache eviction: {oldest_key}")

    def _arm_timer(self, key: Hashable, ttl: float) -> None:
        if not self.use_timers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: lazy expiry and cleanup() cover it
            return
        self._timers[key] = loop.call_later(ttl, self._on_timer, key)

    def _on_timer(self, key: Hashable) -> None:
        self._timers.pop(key, None)
        self.delete(key)

    def start_auto_cleanup(self, interval: float = 60.0) -> None:
        """Run cleanup() every `interval` seconds on the running loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop(interval))
        logger.info(f"Cache auto cleanup started (interval={interval}s, instance={self.instance_id})")

    def stop_auto_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup()

    # ======================================
    # Inspection
    # ======================================
    def keys(self) -> List[Hashable]:
        return list(self._entries.keys())

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            evictions=self._evictions,
            size=len(self._entries),
            max_size=self.max_size,
        )

    @property
    def hit_rate(self) -> float:
        return self.stats().hit_rate

    def clear(self) -> None:
        """Drop every entry and cancel every timer. Counters are kept."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
        logger.info(f"Cache cleared (instance={self.instance_id})")

    def close(self) -> None:
        self.stop_auto_cleanup()
        self.clear()
        logger.info(f"Cache closed (instance={self.instance_id}, stats={self.stats().to_dict()})")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)
