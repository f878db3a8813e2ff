"""
Adapters Package - Request-side Integrations of the Cache.

Following the Hexagonal Architecture (Ports & Adapters) pattern, the cache
service is the core; these adapters connect it to the outside world.

Adapters:
    - GitHubCacheMiddleware: Wraps any request function with caching
    - GitHubAPIService: httpx GitHub REST client using the middleware

Design Principles:
    - The cache never performs HTTP itself
    - Easily swappable via Dependency Injection
"""

from nebula_cache.adapters.cache_middleware import (
    GitHubCacheMiddleware,
    SingleFlight,
    tag_payload,
)
from nebula_cache.adapters.github_client import (
    ContentFetch,
    GitHubAPIService,
    MultiContentResult,
)

__all__ = [
    "ContentFetch",
    "GitHubAPIService",
    "GitHubCacheMiddleware",
    "MultiContentResult",
    "SingleFlight",
    "tag_payload",
]
