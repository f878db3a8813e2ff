"""
GitHub Cache Service - TTL-based Caching with LRU Eviction.

Caches GitHub REST payloads in memory, keyed by endpoint, parameters and
token, with conditional-request validators kept alongside the data.

Design Notes:
    - TTL chosen per key kind (content, repository, user, default)
    - True LRU eviction (smallest last access), bounded by entry count and memory
    - Thread-safe with a reentrant lock
    - Periodic sweep of expired and over-age entries on a daemon timer
    - Stale hits queue a background refresh instead of blocking the caller
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Pattern, Union

from nebula_cache.caching.cache_entry import CacheEntry
from nebula_cache.caching.cache_keys import CacheKey, KeyKind, KeyLike, as_cache_key
from nebula_cache.caching.refresh import BackgroundRefresher, RefreshFn
from nebula_cache.config.models import CacheServiceConfig
from nebula_cache.domain.value_objects import GitHubResponse, RequestOptions

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheLookup:
    """Result of a successful cache read."""

    data: Any
    timestamp: float
    age: float
    cached: bool = True
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    stale: bool = False


@dataclass(frozen=True)
class ConditionalResult:
    """Result of reconciling an upstream response with a cached entry."""

    data: Any
    timestamp: float
    cached: bool
    refreshed: bool = False
    updated: bool = False


@dataclass
class CacheStats:
    """Raw cache counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    background_refreshes: int = 0
    conditional_requests: int = 0
    start_time: float = 0.0

    @property
    def hit_rate(self) -> float:
        """Hit rate in percent, rounded to two decimals."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return round(self.hits / total * 100, 2)


@dataclass(frozen=True)
class MemoryUsage:
    """Memory accounting snapshot."""

    total_bytes: int
    total_mb: float
    average_entry_size: int
    largest_entry_size: int
    oldest_entry_age: float


@dataclass(frozen=True)
class CacheStatsReport:
    """Point-in-time view of the cache, as returned by get_stats()."""

    entries: int
    memory_usage_mb: float
    hit_rate: float
    stats: CacheStats = field(default_factory=CacheStats)
    uptime: float = 0.0
    refresh_queue_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class GitHubCacheService:
    """
    In-memory cache for GitHub API responses.

    Features:
        - Per-kind TTLs with explicit override
        - Conditional request support (ETag / Last-Modified)
        - LRU eviction on entry-count or memory pressure
        - Background refresh of stale entries through a caller-supplied function
        - Statistics tracking

    Usage:
        with GitHubCacheService(CacheServiceConfig(max_entries=500)) as cache:
            key = cache.generate_key("repos/octo/site", {"ref": "main"}, token)
            cache.set(key, payload, etag='"abc"')
            hit = cache.get(key)
    """

    def __init__(
        self,
        config: Optional[CacheServiceConfig] = None,
        clock: Optional[Clock] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Initialize cache service.

        Args:
            config: Cache configuration
            clock: Time source returning epoch seconds (default time.time)
            executor: Executor for background refresh (one is created if None)
        """
        self.config = config or CacheServiceConfig()
        self._clock = clock or time.time
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats(start_time=self._clock())
        self._current_size_bytes = 0
        self._access_seq = 0

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.refresh_workers,
            thread_name_prefix="github-cache-refresh",
        )
        self._refresher = BackgroundRefresher(
            self._executor,
            self._refresh_entry,
            batch_size=self.config.refresh_batch_size,
        )

        self._cleanup_timer: Optional[threading.Timer] = None
        self._closed = False
        if self.config.cleanup_interval_seconds > 0:
            self._schedule_cleanup()

    def __enter__(self) -> "GitHubCacheService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(
        self,
        key: KeyLike,
        refresh_fn: Optional[RefreshFn] = None,
    ) -> Optional[CacheLookup]:
        """
        Get cached data.

        Args:
            key: Cache key
            refresh_fn: Called in the background if the entry is stale

        Returns:
            CacheLookup, or None if not found/expired
        """
        raw = str(key)
        with self._lock:
            now = self._clock()
            entry = self._cache.get(raw)

            if entry is None:
                self._stats.misses += 1
                logger.debug(f"Cache MISS: {raw}")
                return None

            if entry.is_expired(now):
                self._remove_entry(raw)
                self._stats.misses += 1
                self._stats.deletes += 1
                logger.debug(f"Cache EXPIRED: {raw}")
                return None

            self._access_seq += 1
            entry.accessed(now, self._access_seq)
            self._stats.hits += 1

            stale = entry.is_stale(now)
            conditional = self.config.enable_conditional_requests
            lookup = CacheLookup(
                data=entry.data,
                timestamp=entry.timestamp,
                age=entry.age(now),
                etag=entry.etag if conditional else None,
                last_modified=entry.last_modified if conditional else None,
                stale=stale,
            )

        if stale and refresh_fn is not None and self.config.enable_background_refresh:
            self._refresher.schedule(raw, refresh_fn)

        logger.debug(f"Cache HIT: {raw} (age={lookup.age:.1f}s)")
        return lookup

    def set(
        self,
        key: KeyLike,
        data: Any,
        ttl: Optional[float] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        """
        Store data in the cache.

        Args:
            key: Cache key
            data: JSON-serializable payload
            ttl: TTL in seconds (derived from the key kind if None)
            etag: ETag validator from the upstream response
            last_modified: Last-Modified validator from the upstream response
        """
        cache_key = as_cache_key(key)
        raw = str(cache_key)
        effective_ttl = self.ttl_for(cache_key, ttl)

        with self._lock:
            now = self._clock()
            entry = CacheEntry(
                data=data,
                timestamp=now,
                ttl=effective_ttl,
                etag=etag,
                last_modified=last_modified,
            )
            self._access_seq += 1
            entry.access_seq = self._access_seq

            if raw in self._cache:
                self._remove_entry(raw)

            while self._cache and self._should_evict(entry):
                self._evict_lru()

            self._cache[raw] = entry
            self._current_size_bytes += entry.size
            self._stats.sets += 1

            logger.debug(
                f"Cache SET: {raw} ({entry.size} bytes, TTL={effective_ttl}s, "
                f"{len(self._cache)} entries)"
            )

    def update_conditional(
        self,
        key: KeyLike,
        response: Any,
    ) -> Optional[ConditionalResult]:
        """
        Reconcile an upstream response with the cached entry.

        Args:
            key: Cache key
            response: GitHubResponse (or any object with status/data/headers)

        Returns:
            ConditionalResult, or None if there is no entry for the key
            or the response carries neither a 304 nor data
        """
        raw = str(key)
        resp = GitHubResponse.coerce(response)

        with self._lock:
            entry = self._cache.get(raw)
            if entry is None:
                return None

            now = self._clock()

            if resp.not_modified:
                entry.touch(now)
                self._access_seq += 1
                entry.accessed(now, self._access_seq)
                self._stats.conditional_requests += 1
                logger.debug(f"Cache REFRESHED via 304: {raw}")
                return ConditionalResult(
                    data=entry.data,
                    timestamp=entry.timestamp,
                    cached=True,
                    refreshed=True,
                )

            if resp.data is not None:
                old_size = entry.size
                entry.update(
                    resp.data,
                    now,
                    etag=resp.etag,
                    last_modified=resp.last_modified,
                )
                self._current_size_bytes += entry.size - old_size
                logger.debug(f"Cache UPDATED with new data: {raw}")
                return ConditionalResult(
                    data=entry.data,
                    timestamp=entry.timestamp,
                    cached=False,
                    updated=True,
                )

        return None

    def delete(self, key: KeyLike) -> bool:
        """
        Delete a cache entry.

        Returns:
            True if entry was removed, False if not found
        """
        raw = str(key)
        with self._lock:
            if raw not in self._cache:
                return False
            self._remove_entry(raw)
            self._stats.deletes += 1
            return True

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
            self._current_size_bytes = 0
            self._stats.deletes += size
        logger.info(f"Cache CLEARED ({size} entries removed)")

    def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        """
        Delete every entry whose key matches a pattern.

        Args:
            pattern: Regular expression (string or compiled), search semantics

        Returns:
            Number of entries invalidated
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            keys_to_delete = [k for k in self._cache if regex.search(k)]
            for key in keys_to_delete:
                self.delete(key)

        logger.info(
            f"Cache INVALIDATED {len(keys_to_delete)} entries matching '{regex.pattern}'"
        )
        return len(keys_to_delete)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return str(key) in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    # ------------------------------------------------------------------
    # Keys and TTLs
    # ------------------------------------------------------------------

    def generate_key(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        token: Optional[str] = "",
    ) -> CacheKey:
        """Create the cache key for a GitHub API request."""
        return CacheKey.for_endpoint(endpoint, params, token)

    def ttl_for(self, key: KeyLike, ttl: Optional[float] = None) -> float:
        """Resolve the TTL for a key; an explicit TTL always wins."""
        if ttl:
            return ttl
        kind = as_cache_key(key).kind
        if kind is KeyKind.CONTENT:
            return self.config.content_ttl_seconds
        if kind is KeyKind.REPOSITORY:
            return self.config.repository_ttl_seconds
        if kind is KeyKind.USER:
            return self.config.user_ttl_seconds
        return self.config.default_ttl_seconds

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_memory_usage(self) -> MemoryUsage:
        """Get memory usage information."""
        with self._lock:
            now = self._clock()
            count = len(self._cache)
            largest = max((e.size for e in self._cache.values()), default=0)
            oldest = min((e.timestamp for e in self._cache.values()), default=now)
            total = self._current_size_bytes
            return MemoryUsage(
                total_bytes=total,
                total_mb=round(total / BYTES_PER_MB, 2),
                average_entry_size=round(total / count) if count else 0,
                largest_entry_size=largest,
                oldest_entry_age=now - oldest,
            )

    def get_stats(self) -> CacheStatsReport:
        """Get cache statistics."""
        with self._lock:
            stats = CacheStats(**asdict(self._stats))
            return CacheStatsReport(
                entries=len(self._cache),
                memory_usage_mb=self.get_memory_usage().total_mb,
                hit_rate=stats.hit_rate,
                stats=stats,
                uptime=self._clock() - stats.start_time,
                refresh_queue_size=self._refresher.pending_count,
            )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """
        Remove expired entries and entries older than max_age_seconds.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            before = len(self._cache)
            expired = [
                key
                for key, entry in self._cache.items()
                if entry.is_expired(now) or entry.age(now) > self.config.max_age_seconds
            ]
            for key in expired:
                self._remove_entry(key)
            self._stats.deletes += len(expired)

        if expired:
            logger.debug(
                f"Cache cleanup removed {len(expired)} entries "
                f"({before} -> {before - len(expired)})"
            )
        return len(expired)

    def reset(self) -> None:
        """Drop all entries, pending refreshes and counters."""
        with self._lock:
            self._cache.clear()
            self._current_size_bytes = 0
            self._access_seq = 0
            self._refresher.clear()
            self._stats = CacheStats(start_time=self._clock())
        logger.info("Cache RESET")

    def close(self) -> None:
        """Stop the sweep timer and release the refresh executor."""
        with self._lock:
            self._closed = True
            if self._cleanup_timer is not None:
                self._cleanup_timer.cancel()
                self._cleanup_timer = None
        self._refresher.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remove_entry(self, key: str) -> None:
        """Remove entry from cache (internal, must hold lock)."""
        entry = self._cache.pop(key, None)
        if entry:
            self._current_size_bytes -= entry.size

    def _should_evict(self, new_entry: CacheEntry) -> bool:
        """Check whether inserting new_entry would exceed a limit."""
        if len(self._cache) >= self.config.max_entries:
            return True
        projected_mb = (self._current_size_bytes + new_entry.size) / BYTES_PER_MB
        return projected_mb > self.config.max_memory_mb

    def _evict_lru(self) -> None:
        """Evict the least recently accessed entry (must hold lock)."""
        if not self._cache:
            return
        lru_key = min(
            self._cache,
            key=lambda k: (self._cache[k].last_accessed, self._cache[k].access_seq),
        )
        entry = self._cache[lru_key]
        self._remove_entry(lru_key)
        self._stats.evictions += 1
        logger.debug(
            f"Cache EVICTED (LRU): {lru_key} "
            f"(idle {self._clock() - entry.last_accessed:.1f}s)"
        )

    def _refresh_entry(self, key: str, refresh_fn: RefreshFn) -> None:
        """Run one background refresh and store its outcome."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or not entry.is_stale(self._clock()):
                logger.debug(f"Background refresh skipped, entry fresh or gone: {key}")
                return
            if self.config.enable_conditional_requests:
                options = RequestOptions.conditional(entry.etag, entry.last_modified)
            else:
                options = RequestOptions()

        response = GitHubResponse.coerce(refresh_fn(options))

        if self.update_conditional(key, response) is None and response.data is not None:
            self.set(
                key,
                response.data,
                etag=response.etag,
                last_modified=response.last_modified,
            )

        with self._lock:
            self._stats.background_refreshes += 1
        logger.debug(f"Background refresh completed: {key}")

    def _schedule_cleanup(self) -> None:
        with self._lock:
            if self._closed:
                return
            timer = threading.Timer(
                self.config.cleanup_interval_seconds, self._run_scheduled_cleanup
            )
            timer.daemon = True
            self._cleanup_timer = timer
            timer.start()

    def _run_scheduled_cleanup(self) -> None:
        try:
            self.cleanup()
        finally:
            self._schedule_cleanup()
