# ==============================================
# TOPIC 1: CACHING
# ==============================================
#
# This package holds the shared in-memory cache that mirrors
# hot records for fast lookup.
#
# Modules:
# --------
# - cache_entry.py     → CacheEntry and CacheStats data classes
# - expiring_cache.py  → TTL cache with oldest-insertion eviction
#
# ==============================================

from .cache_entry import CacheEntry, CacheStats
from .expiring_cache import ExpiringCache

__all__ = ["CacheEntry", "CacheStats", "ExpiringCache"]
