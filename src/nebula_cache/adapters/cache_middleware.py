"""
GitHub Cache Middleware - Caching Wrapper for GitHub Requests.

Wraps any function that performs a GitHub API request so that it is served
from GitHubCacheService whenever possible.

Design Notes:
    - Decorator/Wrapper pattern around a caller-supplied request function
    - Conditional requests (If-None-Match / If-Modified-Since) for stale entries
    - 304 responses refresh the cached entry instead of replacing it
    - Opt-in stale-cache fallback when the upstream call raises
    - Concurrent misses on one key share a single upstream call; each
      caller still reconciles the shared response with its own options
    - Stale hits are revalidated inline, so no background refresh is queued
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Mapping, Optional

from nebula_cache.caching.cache_keys import CacheKey, KeyLike
from nebula_cache.caching.cache_service import GitHubCacheService
from nebula_cache.config.models import MiddlewareConfig
from nebula_cache.domain.value_objects import GitHubResponse, RequestOptions

logger = logging.getLogger(__name__)

RequestFn = Callable[..., Any]


def tag_payload(data: Any, **markers: Any) -> Dict[str, Any]:
    """
    Attach cache markers (``_cached``, ``_fresh``, ...) to a payload.

    Mapping payloads are copied and merged with the markers; any other
    payload is wrapped as ``{"data": payload}`` first.
    """
    if isinstance(data, Mapping):
        tagged = dict(data)
    else:
        tagged = {"data": data}
    tagged.update(markers)
    return tagged


class SingleFlight:
    """
    Collapses concurrent calls for the same key into one execution.

    The first caller runs the function; callers arriving while it runs wait
    for and share its result or exception.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: Dict[str, Future] = {}

    def run(self, key: str, func: Callable[[], Any]) -> Any:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            logger.debug(f"Joining in-flight request: {key}")
            return future.result()

        try:
            result = func()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)


class GitHubCacheMiddleware:
    """
    Caching wrapper for GitHub API request functions.

    The wrapped function is called as ``request_fn(options)`` where
    ``options`` is a RequestOptions carrying conditional headers, and should
    return a GitHubResponse (or any object with status/data/headers).

    Usage:
        middleware = GitHubCacheMiddleware(cache_service)
        key = middleware.create_key("repos/octo/site", {}, token)

        # First call: cache miss, performs the request
        repo = middleware.wrap_request(fetch_repo, key=key, ttl=600)

        # Second call: cache hit, tagged with _cached/_cache_age
        repo = middleware.wrap_request(fetch_repo, key=key, ttl=600)
    """

    def __init__(
        self,
        cache_service: GitHubCacheService,
        config: Optional[MiddlewareConfig] = None,
    ) -> None:
        """
        Initialize middleware.

        Args:
            cache_service: Cache the middleware reads from and writes to
            config: Defaults for per-call options
        """
        self.cache = cache_service
        self.config = config or MiddlewareConfig()
        self._single_flight = SingleFlight()

    def wrap_request(
        self,
        request_fn: RequestFn,
        key: Optional[KeyLike] = None,
        ttl: Optional[float] = None,
        skip_cache: bool = False,
        enable_conditional: Optional[bool] = None,
        fallback_on_error: Optional[bool] = None,
    ) -> Any:
        """
        Perform a GitHub request through the cache.

        Args:
            request_fn: Function performing the upstream request
            key: Cache key; without one the cache is bypassed
            ttl: TTL in seconds for a freshly stored response
            skip_cache: Bypass the cache entirely
            enable_conditional: Send validators for stale entries (config default)
            fallback_on_error: Serve cached data if the request raises (config default)

        Returns:
            Payload tagged with cache markers, or the raw response when it
            carries no data
        """
        if enable_conditional is None:
            enable_conditional = self.config.enable_conditional_requests
        if fallback_on_error is None:
            fallback_on_error = self.config.fallback_on_error

        if not key or skip_cache:
            response = request_fn()
            data = getattr(response, "data", None)
            return data if data is not None else response

        # No refresh_fn: a stale hit is revalidated below, on this call
        cached = self.cache.get(key)

        if cached is not None and not cached.stale:
            logger.debug(f"Cache hit: {key} (age={cached.age:.1f}s)")
            return tag_payload(cached.data, _cached=True, _cache_age=cached.age)

        if enable_conditional and cached is not None:
            options = RequestOptions.conditional(cached.etag, cached.last_modified)
        else:
            options = RequestOptions()

        try:
            raw = self._single_flight.run(str(key), lambda: request_fn(options))
        except Exception as e:
            if cached is not None and fallback_on_error:
                logger.warning(
                    f"Request failed, returning cached data as fallback: {key}: {e}"
                )
                return tag_payload(
                    cached.data, _cached=True, _fallback=True, _error=str(e)
                )
            raise

        return self._reconcile(key, raw, ttl)

    def _reconcile(self, key: KeyLike, raw: Any, ttl: Optional[float]) -> Any:
        """Apply an upstream response to the cache and tag the payload."""
        response = GitHubResponse.coerce(raw)

        if response.not_modified:
            updated = self.cache.update_conditional(key, response)
            if updated is not None:
                logger.debug(f"Cache refreshed via conditional request: {key}")
                return tag_payload(updated.data, _cached=True, _refreshed=True)

        if response.data is not None:
            self.cache.set(
                key,
                response.data,
                ttl=ttl,
                etag=response.etag,
                last_modified=response.last_modified,
            )
            logger.debug(f"Fresh data cached: {key}")
            return tag_payload(response.data, _cached=False, _fresh=True)

        return raw

    def create_key(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        token: Optional[str] = "",
    ) -> CacheKey:
        """Create cache key for a GitHub API endpoint."""
        return self.cache.generate_key(endpoint, params, token)

    def invalidate_repository(self, owner: str, repo: str) -> int:
        """
        Invalidate every cached response under a repository.

        Returns:
            Number of entries invalidated
        """
        pattern = rf"^github:repos/{re.escape(owner)}/{re.escape(repo)}(?=[/:])"
        return self.cache.invalidate(pattern)

    def invalidate_user(self, username: str) -> int:
        """
        Invalidate every cached response under a user.

        Returns:
            Number of entries invalidated
        """
        pattern = rf"^github:users/{re.escape(username)}(?=[/:])"
        return self.cache.invalidate(pattern)
