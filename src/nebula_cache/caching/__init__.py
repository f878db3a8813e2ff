"""
Caching Layer.

Provides caching infrastructure for GitHub API responses:
    - GitHubCacheService: TTL-based caching with LRU eviction
    - CacheEntry: A cached payload with validators and access statistics
    - CacheKey / KeyKind: Tagged keys deciding the TTL class at build time
    - CacheStats / CacheStatsReport: Statistics tracking for cache operations
"""

from nebula_cache.caching.cache_entry import CacheEntry, calculate_size
from nebula_cache.caching.cache_keys import CacheKey, KeyKind, KeyLike
from nebula_cache.caching.cache_service import (
    CacheLookup,
    CacheStats,
    CacheStatsReport,
    ConditionalResult,
    GitHubCacheService,
    MemoryUsage,
)

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheLookup",
    "CacheStats",
    "CacheStatsReport",
    "ConditionalResult",
    "GitHubCacheService",
    "KeyKind",
    "KeyLike",
    "MemoryUsage",
    "calculate_size",
]
