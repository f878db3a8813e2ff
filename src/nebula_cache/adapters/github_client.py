"""
GitHub API Service - httpx client routed through the cache middleware.

Every read goes through GitHubCacheMiddleware so repeated requests are
served from memory, stale entries are revalidated with conditional headers,
and (optionally) cached data is served when GitHub is unreachable.

Design Notes:
    - One httpx.Client per service, closed with close() / context manager
    - HTTP failures mapped to the GitHubAPIError hierarchy
    - Transient failures retried by ErrorHandler; 304 is not an error
    - Multi-path reads run in batches; one failing path never fails the batch
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from nebula_cache.adapters.cache_middleware import GitHubCacheMiddleware
from nebula_cache.caching.cache_service import GitHubCacheService
from nebula_cache.config.models import GitHubClientConfig, MiddlewareConfig, NebulaCacheConfig
from nebula_cache.domain.value_objects import HTTP_NOT_MODIFIED, GitHubResponse, RequestOptions
from nebula_cache.resilience.error_handler import ErrorHandler, RetryConfig
from nebula_cache.resilience.errors import (
    GitHubNetworkError,
    GitHubRateLimitError,
    parse_github_error,
)

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
SERVICE_NAME = "github-api"

# Serve cached data when GitHub fails, unless the caller configures otherwise
CLIENT_MIDDLEWARE_DEFAULTS = MiddlewareConfig(fallback_on_error=True)


@dataclass(frozen=True)
class ContentFetch:
    """Outcome of reading one path in a multi-path read."""

    path: str
    content: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class MultiContentResult:
    """
    Results of get_multiple_contents().

    Attributes:
        results: Paths read successfully, in request order
        errors: Paths that failed, with the error message
    """

    results: List[ContentFetch] = field(default_factory=list)
    errors: List[ContentFetch] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def success_rate(self) -> int:
        """Percentage of successful paths, rounded to an integer."""
        return round(len(self.results) / self.total * 100) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [
                {"path": r.path, "content": r.content, "success": True} for r in self.results
            ],
            "errors": [
                {"path": e.path, "error": e.error, "success": False} for e in self.errors
            ],
            "stats": {
                "total": self.total,
                "successful": len(self.results),
                "failed": len(self.errors),
                "success_rate": self.success_rate,
            },
        }


class GitHubAPIService:
    """
    GitHub REST client with caching, conditional requests and retries.

    Usage:
        config = load_config("config/default.yaml", profile="production")
        with GitHubAPIService.from_config(config, token) as github:
            repo = github.get_repository("octo", "site")
            readme = github.get_contents("octo", "site", "README.md", ref="main")
    """

    def __init__(
        self,
        access_token: str,
        cache_service: GitHubCacheService,
        config: Optional[GitHubClientConfig] = None,
        middleware_config: Optional[MiddlewareConfig] = None,
        http_client: Optional[httpx.Client] = None,
        error_handler: Optional[ErrorHandler] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Initialize GitHub API service.

        Args:
            access_token: GitHub OAuth or personal access token
            cache_service: Shared cache service
            config: Client configuration
            middleware_config: Conditional request / fallback defaults
                (fallback enabled if None)
            http_client: Pre-built httpx client (one is created if None)
            error_handler: Retry policy (built from config if None)
            transport: httpx transport for the created client (e.g. MockTransport)

        Raises:
            ValueError: If no access token is given
        """
        if not access_token:
            raise ValueError("GitHub access token is required")

        self.config = config or GitHubClientConfig()
        self._access_token = access_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            transport=transport,
        )
        self._headers = {
            "Accept": GITHUB_ACCEPT,
            "Authorization": f"Bearer {access_token}",
            "User-Agent": self.config.user_agent,
        }
        self.cache = cache_service
        self.middleware = GitHubCacheMiddleware(
            cache_service, middleware_config or CLIENT_MIDDLEWARE_DEFAULTS
        )
        self.error_handler = error_handler or ErrorHandler(
            RetryConfig.from_settings(self.config.retry)
        )
        self._sleep = time.sleep

        self._stats_lock = threading.Lock()
        self._stats: Dict[str, float] = {
            "requests": 0,
            "not_modified": 0,
            "errors": 0,
            "rate_limit_hits": 0,
            "bytes_transferred": 0,
            "start_time": time.time(),
        }
        self._rate_limit: Dict[str, Optional[int]] = {
            "remaining": None,
            "limit": None,
            "reset": None,
        }

    @classmethod
    def from_config(
        cls,
        config: NebulaCacheConfig,
        access_token: str,
        cache_service: Optional[GitHubCacheService] = None,
        **kwargs: Any,
    ) -> "GitHubAPIService":
        """
        Build a client (and, if not given, its cache) from loaded configuration.

        Args:
            config: Root configuration, e.g. from load_config()
            access_token: GitHub token
            cache_service: Existing cache to share (built from config.cache if None)
            **kwargs: Passed through to the constructor (transport, error_handler, ...)
        """
        cache = cache_service or GitHubCacheService(config.cache)
        return cls(
            access_token,
            cache,
            config=config.github,
            middleware_config=config.middleware,
            **kwargs,
        )

    def __enter__(self) -> "GitHubAPIService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ── Read operations ──

    def get_repository(self, owner: str, repo: str, **cache_options: Any) -> Any:
        """Get repository information."""
        endpoint = f"repos/{owner}/{repo}"
        return self._cached_get(endpoint, {}, ttl=600.0, **cache_options)

    def get_contents(
        self,
        owner: str,
        repo: str,
        path: str = "",
        ref: Optional[str] = None,
        **cache_options: Any,
    ) -> Any:
        """Get a file or directory listing from a repository."""
        endpoint = f"repos/{owner}/{repo}/contents/{path.strip('/')}"
        return self._cached_get(endpoint, {"ref": ref}, ttl=180.0, **cache_options)

    def get_multiple_contents(
        self,
        owner: str,
        repo: str,
        paths: Sequence[str],
        ref: Optional[str] = None,
        **cache_options: Any,
    ) -> MultiContentResult:
        """
        Read several paths of one repository through the cache.

        Paths are fetched in batches of ``batch_size`` with up to
        ``max_concurrent_requests`` in flight, pausing between batches.
        A path that fails is reported in ``errors`` instead of raising.

        Args:
            owner: Repository owner
            repo: Repository name
            paths: File paths to read
            ref: Git ref for every path

        Returns:
            MultiContentResult with per-path outcomes
        """
        result = MultiContentResult()
        if not paths:
            return result

        parallel = self.config.enable_parallel_fetching and len(paths) > 1
        logger.info(
            f"Fetching {len(paths)} paths from {owner}/{repo} "
            f"({'parallel' if parallel else 'sequential'})"
        )

        def fetch(path: str) -> ContentFetch:
            try:
                content = self.get_contents(owner, repo, path, ref=ref, **cache_options)
            except Exception as e:
                logger.warning(f"Failed to fetch {owner}/{repo}/{path}: {e}")
                return ContentFetch(path=path, error=str(e))
            return ContentFetch(path=path, content=content)

        if parallel:
            size = self.config.batch_size
            batches = [paths[i:i + size] for i in range(0, len(paths), size)]
            with ThreadPoolExecutor(
                max_workers=self.config.max_concurrent_requests,
                thread_name_prefix="github-contents",
            ) as pool:
                for index, batch in enumerate(batches):
                    outcomes = list(pool.map(fetch, batch))
                    for outcome in outcomes:
                        (result.results if outcome.success else result.errors).append(outcome)
                    if index < len(batches) - 1 and self.config.batch_pause_seconds:
                        self._sleep(self.config.batch_pause_seconds)
        else:
            for path in paths:
                outcome = fetch(path)
                (result.results if outcome.success else result.errors).append(outcome)

        logger.info(
            f"Fetched {owner}/{repo}: {len(result.results)} ok, "
            f"{len(result.errors)} failed of {result.total}"
        )
        return result

    def get_tree(
        self,
        owner: str,
        repo: str,
        tree_sha: str,
        recursive: bool = False,
        **cache_options: Any,
    ) -> Any:
        """Get a git tree, optionally recursive."""
        endpoint = f"repos/{owner}/{repo}/git/trees/{tree_sha}"
        params = {"recursive": "true" if recursive else None}
        return self._cached_get(endpoint, params, ttl=300.0, **cache_options)

    def search_repositories(
        self,
        query: str,
        sort: Optional[str] = None,
        order: Optional[str] = None,
        per_page: int = 30,
        page: int = 1,
        **cache_options: Any,
    ) -> Any:
        """Search repositories. Results are never served as a fallback."""
        params = {"q": query, "sort": sort, "order": order, "per_page": per_page, "page": page}
        cache_options.setdefault("fallback_on_error", False)
        return self._cached_get("search/repositories", params, ttl=300.0, **cache_options)

    def get_user(self, username: Optional[str] = None, **cache_options: Any) -> Any:
        """Get a user, or the authenticated user when username is None."""
        endpoint = f"users/{username}" if username else "user"
        return self._cached_get(endpoint, {}, ttl=900.0, **cache_options)

    def get_rate_limit(self) -> Dict[str, Any]:
        """Current core rate limit status. Never cached."""
        response = self._request("rate_limit", {}, RequestOptions())
        data = response.data or {}
        return data.get("rate") or data.get("resources", {}).get("core", {})

    # ── Cache management ──

    def invalidate_repository(self, owner: str, repo: str) -> int:
        return self.middleware.invalidate_repository(owner, repo)

    def invalidate_user(self, username: str) -> int:
        return self.middleware.invalidate_user(username)

    # ── Monitoring ──

    def get_stats(self) -> Dict[str, Any]:
        """Request counters, last seen rate limit and cache statistics."""
        with self._stats_lock:
            requests = dict(self._stats)
            rate_limit = dict(self._rate_limit)

        reset = rate_limit.pop("reset")
        rate_limit["reset_time"] = (
            datetime.fromtimestamp(reset, tz=timezone.utc).isoformat() if reset else None
        )
        error_rate = (
            round(requests["errors"] / requests["requests"] * 100, 2)
            if requests["requests"]
            else 0.0
        )
        return {
            "service": SERVICE_NAME,
            "requests": requests,
            "uptime": time.time() - requests["start_time"],
            "error_rate": error_rate,
            "rate_limit": rate_limit,
            "cache": self.cache.get_stats().to_dict(),
        }

    def get_health_status(self) -> Dict[str, Any]:
        """
        Check GitHub reachability with the authenticated user endpoint.

        Never raises; failures are reported with ``healthy: False``.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            user = self.get_user()
        except Exception as e:
            logger.warning(f"GitHub health check failed: {e}")
            return {
                "healthy": False,
                "service": SERVICE_NAME,
                "error": str(e),
                "stats": self.get_stats(),
                "timestamp": timestamp,
            }

        return {
            "healthy": True,
            "service": SERVICE_NAME,
            "user": {"login": user.get("login"), "id": user.get("id")},
            "stats": self.get_stats(),
            "timestamp": timestamp,
        }

    # ── Internals ──

    def _cached_get(
        self,
        endpoint: str,
        params: Dict[str, Any],
        ttl: float,
        **cache_options: Any,
    ) -> Any:
        key = self.middleware.create_key(endpoint, params, self._access_token)
        cache_options.setdefault("ttl", ttl)

        def request_fn(options: Optional[RequestOptions] = None) -> GitHubResponse:
            return self._request(endpoint, params, options or RequestOptions())

        return self.middleware.wrap_request(
            request_fn,
            key=key if self.config.enable_caching else None,
            **cache_options,
        )

    def _request(
        self,
        endpoint: str,
        params: Dict[str, Any],
        options: RequestOptions,
    ) -> GitHubResponse:
        """GET an endpoint with retries; 304 is returned, not raised."""
        query = {k: v for k, v in params.items() if v is not None}
        headers = {**self._headers, **options.headers}
        path = f"/{endpoint}"

        def send() -> GitHubResponse:
            self._count("requests")
            try:
                response = self._client.get(path, params=query, headers=headers)
            except httpx.TransportError as e:
                raise GitHubNetworkError(
                    f"Network error connecting to GitHub: {e}", original_error=e
                ) from e
            return self._to_response(response, path)

        try:
            return self.error_handler.retry(send, f"GET {path}")
        except Exception:
            self._count("errors")
            raise

    def _to_response(self, response: httpx.Response, path: str) -> GitHubResponse:
        self._track_rate_limit(response)
        headers = {k.lower(): v for k, v in response.headers.items()}
        if response.status_code == HTTP_NOT_MODIFIED:
            self._count("not_modified")
            logger.debug(f"GET {path} -> 304 Not Modified")
            return GitHubResponse(status=HTTP_NOT_MODIFIED, headers=headers)

        if response.status_code >= 400:
            error = parse_github_error(response, endpoint=path)
            if isinstance(error, GitHubRateLimitError):
                self._count("rate_limit_hits")
            raise error

        self._count("bytes_transferred", len(response.content))
        data = response.json() if response.content else None
        logger.debug(f"GET {path} -> {response.status_code}")
        return GitHubResponse(status=response.status_code, data=data, headers=headers)

    def _track_rate_limit(self, response: httpx.Response) -> None:
        """Remember the x-ratelimit-* values of the latest response."""
        values = {}
        for name in ("remaining", "limit", "reset"):
            raw = response.headers.get(f"x-ratelimit-{name}")
            if raw is not None and raw.isdigit():
                values[name] = int(raw)
        if values:
            with self._stats_lock:
                self._rate_limit.update(values)

    def _count(self, name: str, amount: float = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount
