# ==============================================
# CacheEntry / CacheStats
# ==============================================
#
# PURPOSE:
#   Data classes held by ExpiringCache: the stored entry with its
#   insertion time and TTL, and the counters snapshot exposed to
#   callers and to the metrics collector.
#
# CLASS: CacheEntry (dataclass)
# -----------------------------
#   - value: Any          → Opaque cached value
#   - inserted_at: float  → Clock reading at insertion
#   - ttl: float          → Seconds to live; <= 0 means "never by time"
#
#   Methods:
#   --------
#   - is_expired(now: float) -> bool
#       True only when ttl > 0 and now - inserted_at > ttl.
#
# CLASS: CacheStats (dataclass, frozen)
# -------------------------------------
#   hits, misses, sets, deletes, evictions, size, max_size
#   hit_rate -> float   hits / (hits + misses), 0.0 with no lookups
#
# ==============================================

from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass
class CacheEntry:
    """A single cached value with its insertion time and TTL."""

    value: Any
    inserted_at: float
    ttl: float = 0.0

    def is_expired(self, now: float) -> bool:
        """
        Check if the entry has outlived its TTL.

        Args:
            now: Current reading of the owning cache's clock

        Returns:
            True if the entry has a positive TTL and it has elapsed
        """
        return self.ttl > 0 and (now - self.inserted_at) > self.ttl


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time counters of an ExpiringCache."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        if lookups == 0:
            return 0.0
        return self.hits / lookups

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = round(self.hit_rate, 4)
        return data
