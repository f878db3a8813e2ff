"""
Nebula Cache - GitHub API Caching Layer for the Nebula portfolio platform.

Sits between the platform and the GitHub REST API to keep request volume
well under the rate limit: repeated reads are served from memory, stale
entries are revalidated with conditional requests, and cached data can
stand in for GitHub when it is unreachable.

Architecture:
    - Hexagonal Architecture (Ports & Adapters)
    - Dependency Injection, no global cache instance
    - Configuration-driven behavior via YAML

Main Components:
    - caching: GitHubCacheService, CacheEntry, tagged CacheKey
    - adapters: GitHubCacheMiddleware, httpx GitHubAPIService
    - performance: PortfolioPerformanceService
    - resilience: GitHub error taxonomy and retry
    - config: Configuration models and loaders

Example:
    >>> from nebula_cache import GitHubCacheService, GitHubCacheMiddleware
    >>> cache = GitHubCacheService()
    >>> middleware = GitHubCacheMiddleware(cache)
    >>> key = middleware.create_key("repos/octo/site", {}, token)
    >>> repo = middleware.wrap_request(fetch_repo, key=key, fallback_on_error=True)
"""

import logging

from nebula_cache.adapters import GitHubAPIService, GitHubCacheMiddleware
from nebula_cache.caching import CacheKey, GitHubCacheService, KeyKind
from nebula_cache.config import NebulaCacheConfig, load_config
from nebula_cache.domain import GitHubResponse, RequestOptions
from nebula_cache.performance import PortfolioPerformanceService

__version__ = "0.1.0"


def configure_logging(
    level: int = logging.INFO,
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
) -> None:
    """
    Configure logging for Nebula Cache.

    Call this at application startup to see log messages.
    By default, only WARNING and above are visible.

    Args:
        level: Logging level (default: INFO)
        format: Log message format

    Example:
        >>> import nebula_cache
        >>> nebula_cache.configure_logging(logging.DEBUG)
    """
    logging.basicConfig(
        level=level,
        format=format,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("nebula_cache").setLevel(level)


__all__ = [
    "CacheKey",
    "GitHubAPIService",
    "GitHubCacheMiddleware",
    "GitHubCacheService",
    "GitHubResponse",
    "KeyKind",
    "NebulaCacheConfig",
    "PortfolioPerformanceService",
    "RequestOptions",
    "configure_logging",
    "load_config",
]
