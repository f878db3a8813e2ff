"""
Unit Tests for GitHubAPIService.

Tests for:
    - Request headers and endpoint/param mapping
    - Response caching and 304 revalidation
    - Error mapping and retries
    - Stale fallback on upstream failure
    - Multi-path content reads
    - Health status and request statistics
    - Building the client from loaded configuration
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import List

import httpx
import pytest

from nebula_cache.adapters.github_client import (
    GitHubAPIService,
    MultiContentResult,
)
from nebula_cache.caching.cache_service import GitHubCacheService
from nebula_cache.config.loader import load_config
from nebula_cache.config.models import (
    CacheServiceConfig,
    GitHubClientConfig,
    MiddlewareConfig,
    NebulaCacheConfig,
    RetrySettings,
)
from nebula_cache.resilience.error_handler import ErrorHandler, RetryConfig, RetryExhausted
from nebula_cache.resilience.errors import (
    GitHubAuthError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
)

TOKEN = "ghp_testtoken"
REPO_CONFIG = Path(__file__).parent.parent.parent / "config" / "default.yaml"


def contents_handler(seen: List[str], missing=()):
    """httpx handler serving /contents/ paths, 404 for the missing ones."""

    def handle(request: httpx.Request) -> httpx.Response:
        seen.append(threading.current_thread().name)
        path = request.url.path.split("/contents/", 1)[1]
        if path in missing:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json={"path": path})

    return handle


class Recorder:
    """httpx handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def service(clock, inline_executor):
    config = CacheServiceConfig(cleanup_interval_seconds=0, enable_background_refresh=False)
    cache = GitHubCacheService(config, clock=clock, executor=inline_executor)
    yield cache
    cache.close()


@pytest.fixture
def sleeps() -> List[float]:
    return []


def make_client(service, recorder, sleeps=None, middleware=None, **config) -> GitHubAPIService:
    client_config = GitHubClientConfig(**config)
    handler = ErrorHandler(
        RetryConfig.from_settings(client_config.retry),
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )
    return GitHubAPIService(
        TOKEN,
        service,
        config=client_config,
        middleware_config=middleware,
        error_handler=handler,
        transport=httpx.MockTransport(recorder),
    )


class TestConstruction:
    """Service construction."""

    def test_empty_token_rejected(self, service) -> None:
        with pytest.raises(ValueError):
            GitHubAPIService("", service)

    def test_context_manager_closes_client(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={}))
        with make_client(service, recorder) as github:
            client = github._client
        assert client.is_closed


class TestReads:
    """Read operations and caching."""

    def test_sends_github_headers(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"name": "site"}))
        with make_client(service, recorder) as github:
            github.get_repository("octo", "site")

        request = recorder.requests[0]
        assert request.url.path == "/repos/octo/site"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.headers["Accept"] == "application/vnd.github+json"
        assert request.headers["User-Agent"] == "Nebula-Portfolio-Platform"

    def test_repository_cached(self, service) -> None:
        """
        SCENARIO: Same repository requested twice
        EXPECTED: One HTTP request; second result tagged cached
        """
        recorder = Recorder(httpx.Response(200, json={"name": "site"}))
        with make_client(service, recorder) as github:
            first = github.get_repository("octo", "site")
            second = github.get_repository("octo", "site")

        assert first["_fresh"] is True
        assert second["_cached"] is True
        assert second["name"] == "site"
        assert len(recorder.requests) == 1

    def test_contents_params(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"content": "aGk="}))
        with make_client(service, recorder) as github:
            github.get_contents("octo", "site", "/docs/index.md", ref="dev")

        request = recorder.requests[0]
        assert request.url.path == "/repos/octo/site/contents/docs/index.md"
        assert request.url.params["ref"] == "dev"

    def test_tree_recursive_flag(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"tree": []}))
        with make_client(service, recorder) as github:
            github.get_tree("octo", "site", "abc123", recursive=True)
            github.get_tree("octo", "site", "abc123")

        assert recorder.requests[0].url.params["recursive"] == "true"
        assert "recursive" not in recorder.requests[1].url.params

    def test_search_params(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"items": []}))
        with make_client(service, recorder) as github:
            github.search_repositories("topic:portfolio", sort="stars")

        params = recorder.requests[0].url.params
        assert params["q"] == "topic:portfolio"
        assert params["sort"] == "stars"
        assert params["per_page"] == "30"
        assert "order" not in params

    def test_authenticated_user(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"login": "octo"}))
        with make_client(service, recorder) as github:
            user = github.get_user()

        assert recorder.requests[0].url.path == "/user"
        assert user["login"] == "octo"

    def test_caching_disabled(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"login": "octo"}))
        with make_client(service, recorder, enable_caching=False) as github:
            github.get_user("octo")
            result = github.get_user("octo")

        assert len(recorder.requests) == 2
        assert result == {"login": "octo"}
        assert len(service) == 0

    def test_stale_entry_revalidated_with_etag(self, service, clock) -> None:
        """
        SCENARIO: Cached repo past 80% of its TTL, GitHub answers 304
        EXPECTED: If-None-Match sent; cached data returned refreshed
        """
        recorder = Recorder(
            httpx.Response(200, json={"name": "site"}, headers={"ETag": '"abc"'}),
            httpx.Response(304),
        )
        with make_client(service, recorder) as github:
            github.get_repository("octo", "site")
            clock.advance(500)
            result = github.get_repository("octo", "site")
            stats = github.get_stats()

        assert recorder.requests[1].headers["If-None-Match"] == '"abc"'
        assert result["_refreshed"] is True
        assert result["name"] == "site"
        assert stats["requests"]["not_modified"] == 1

    def test_rate_limit_endpoint(self, service) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"resources": {"core": {"limit": 5000, "remaining": 4999}}})
        )
        with make_client(service, recorder) as github:
            rate = github.get_rate_limit()
            github.get_rate_limit()

        assert rate == {"limit": 5000, "remaining": 4999}
        assert len(recorder.requests) == 2


class TestErrors:
    """Error mapping, retries and fallback."""

    def test_not_found_is_not_retried(self, service, sleeps) -> None:
        recorder = Recorder(httpx.Response(404, json={"message": "Not Found"}))
        with make_client(service, recorder, sleeps) as github:
            with pytest.raises(GitHubNotFoundError):
                github.get_repository("octo", "missing")
            stats = github.get_stats()

        assert len(recorder.requests) == 1
        assert sleeps == []
        assert stats["requests"]["errors"] == 1

    def test_unauthorized(self, service) -> None:
        recorder = Recorder(httpx.Response(401, json={"message": "Bad credentials"}))
        with make_client(service, recorder) as github:
            with pytest.raises(GitHubAuthError):
                github.get_user()

    def test_server_error_retried(self, service, sleeps) -> None:
        recorder = Recorder(
            httpx.Response(503),
            httpx.Response(200, json={"name": "site"}),
        )
        with make_client(service, recorder, sleeps) as github:
            result = github.get_repository("octo", "site")

        assert result["name"] == "site"
        assert len(recorder.requests) == 2
        assert sleeps == [1.0]

    def test_retries_exhausted(self, service, sleeps) -> None:
        recorder = Recorder(httpx.Response(500))
        with make_client(
            service, recorder, sleeps, retry=RetrySettings(max_attempts=3)
        ) as github:
            with pytest.raises(RetryExhausted) as exc_info:
                github.get_repository("octo", "site")

        assert isinstance(exc_info.value.__cause__, GitHubServerError)
        assert len(recorder.requests) == 3
        assert sleeps == [1.0, 2.0]

    def test_network_error_retried(self, service, sleeps) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        github = GitHubAPIService(
            TOKEN,
            service,
            error_handler=ErrorHandler(RetryConfig(max_attempts=2), sleep=sleeps.append),
            transport=httpx.MockTransport(handler),
        )
        with github, pytest.raises(RetryExhausted):
            github.get_user("octo")

        assert sleeps == [1.0]

    def test_rate_limit_far_in_future_not_waited(self, service, sleeps) -> None:
        reset = int(time.time()) + 3600
        recorder = Recorder(
            httpx.Response(
                403,
                json={"message": "API rate limit exceeded"},
                headers={
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "X-RateLimit-Limit": "5000",
                },
            )
        )
        with make_client(service, recorder, sleeps) as github:
            with pytest.raises(GitHubRateLimitError) as exc_info:
                github.get_user("octo")

        assert exc_info.value.reset_time == reset
        assert exc_info.value.limit == 5000
        assert sleeps == []

    def test_fallback_serves_stale_data(self, service, clock) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"name": "site"}),
            httpx.Response(500),
        )
        with make_client(service, recorder, retry=RetrySettings(max_attempts=1)) as github:
            github.get_repository("octo", "site")
            clock.advance(500)
            result = github.get_repository("octo", "site")

        assert result["name"] == "site"
        assert result["_fallback"] is True

    def test_search_never_falls_back(self, service, clock) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"items": []}),
            httpx.Response(500),
        )
        with make_client(service, recorder, retry=RetrySettings(max_attempts=1)) as github:
            github.search_repositories("topic:portfolio")
            clock.advance(290)
            with pytest.raises(RetryExhausted):
                github.search_repositories("topic:portfolio")


class TestInvalidation:
    """Cache invalidation through the client."""

    def test_invalidate_repository_forces_refetch(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"name": "site"}))
        with make_client(service, recorder) as github:
            github.get_repository("octo", "site")
            github.get_contents("octo", "site", "README.md")

            assert github.invalidate_repository("octo", "site") == 2
            github.get_repository("octo", "site")

        assert len(recorder.requests) == 3


class TestMultipleContents:
    """Batched reads of several paths."""

    def test_no_paths(self, service) -> None:
        seen: List[str] = []
        with make_client(service, contents_handler(seen)) as github:
            result = github.get_multiple_contents("octo", "site", [])

        assert isinstance(result, MultiContentResult)
        assert result.total == 0
        assert result.success_rate == 0
        assert seen == []

    def test_failed_path_reported_not_raised(self, service) -> None:
        """
        SCENARIO: Three paths, one of which does not exist
        EXPECTED: Two results, one error, success rate rounded to 67
        """
        seen: List[str] = []
        handler = contents_handler(seen, missing={"missing.md"})
        with make_client(service, handler, batch_pause_seconds=0) as github:
            result = github.get_multiple_contents(
                "octo", "site", ["a.md", "missing.md", "b.md"]
            )

        assert [r.path for r in result.results] == ["a.md", "b.md"]
        assert result.results[0].content["path"] == "a.md"
        assert result.results[0].success is True
        assert [e.path for e in result.errors] == ["missing.md"]
        assert result.errors[0].success is False
        assert "not found" in result.errors[0].error
        assert result.to_dict()["stats"] == {
            "total": 3,
            "successful": 2,
            "failed": 1,
            "success_rate": 67,
        }

    def test_parallel_reads_use_worker_threads(self, service) -> None:
        seen: List[str] = []
        with make_client(service, contents_handler(seen), batch_pause_seconds=0) as github:
            github.get_multiple_contents("octo", "site", ["a.md", "b.md"])

        assert len(seen) == 2
        assert all(name.startswith("github-contents") for name in seen)

    def test_sequential_when_parallel_disabled(self, service) -> None:
        seen: List[str] = []
        with make_client(
            service, contents_handler(seen), enable_parallel_fetching=False
        ) as github:
            result = github.get_multiple_contents("octo", "site", ["a.md", "b.md"])

        assert seen == ["MainThread", "MainThread"]
        assert result.success_rate == 100

    def test_pause_between_batches(self, service) -> None:
        """
        SCENARIO: Five paths in batches of two
        EXPECTED: Three batches, a pause after each but the last
        """
        seen: List[str] = []
        pauses: List[float] = []
        with make_client(
            service, contents_handler(seen), batch_size=2, batch_pause_seconds=0.5
        ) as github:
            github._sleep = pauses.append
            result = github.get_multiple_contents(
                "octo", "site", ["1.md", "2.md", "3.md", "4.md", "5.md"]
            )

        assert pauses == [0.5, 0.5]
        assert [r.path for r in result.results] == ["1.md", "2.md", "3.md", "4.md", "5.md"]

    def test_paths_served_from_cache(self, service) -> None:
        seen: List[str] = []
        with make_client(service, contents_handler(seen), batch_pause_seconds=0) as github:
            github.get_multiple_contents("octo", "site", ["a.md", "b.md"], ref="main")
            result = github.get_multiple_contents("octo", "site", ["a.md", "b.md"], ref="main")

        assert len(seen) == 2
        assert all(r.content["_cached"] is True for r in result.results)


class TestHealthAndStats:
    """Health status and request statistics."""

    def test_healthy(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={"login": "octo", "id": 7, "bio": "x"}))
        with make_client(service, recorder) as github:
            status = github.get_health_status()

        assert status["healthy"] is True
        assert status["service"] == "github-api"
        assert status["user"] == {"login": "octo", "id": 7}
        assert status["stats"]["requests"]["requests"] == 1
        assert "timestamp" in status

    def test_unhealthy_does_not_raise(self, service) -> None:
        recorder = Recorder(httpx.Response(401, json={"message": "Bad credentials"}))
        with make_client(service, recorder) as github:
            status = github.get_health_status()

        assert status["healthy"] is False
        assert "authentication failed" in status["error"]
        assert status["stats"]["requests"]["errors"] == 1
        assert "user" not in status

    def test_empty_stats(self, service) -> None:
        recorder = Recorder(httpx.Response(200, json={}))
        with make_client(service, recorder) as github:
            stats = github.get_stats()

        assert stats["service"] == "github-api"
        assert stats["error_rate"] == 0.0
        assert stats["rate_limit"] == {"remaining": None, "limit": None, "reset_time": None}
        assert stats["cache"]["entries"] == 0

    def test_error_rate(self, service) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"name": "site"}),
            httpx.Response(404, json={"message": "Not Found"}),
        )
        with make_client(service, recorder) as github:
            github.get_repository("octo", "site")
            with pytest.raises(GitHubNotFoundError):
                github.get_repository("octo", "missing")
            stats = github.get_stats()

        assert stats["requests"]["requests"] == 2
        assert stats["requests"]["errors"] == 1
        assert stats["error_rate"] == 50.0

    def test_rate_limit_headers_tracked(self, service) -> None:
        recorder = Recorder(
            httpx.Response(
                200,
                json={"login": "octo"},
                headers={
                    "X-RateLimit-Remaining": "4999",
                    "X-RateLimit-Limit": "5000",
                    "X-RateLimit-Reset": "1700000000",
                },
            )
        )
        with make_client(service, recorder) as github:
            github.get_user("octo")
            stats = github.get_stats()

        assert stats["rate_limit"] == {
            "remaining": 4999,
            "limit": 5000,
            "reset_time": "2023-11-14T22:13:20+00:00",
        }

    def test_rate_limit_error_tracked(self, service) -> None:
        """
        SCENARIO: GitHub rejects a request with the rate limit exhausted
        EXPECTED: Remaining 0 recorded and the hit counted
        """
        reset = int(time.time()) + 3600
        recorder = Recorder(
            httpx.Response(
                403,
                json={"message": "API rate limit exceeded"},
                headers={
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "X-RateLimit-Limit": "5000",
                },
            )
        )
        with make_client(service, recorder) as github:
            with pytest.raises(GitHubRateLimitError):
                github.get_user("octo")
            stats = github.get_stats()

        assert stats["rate_limit"]["remaining"] == 0
        assert stats["rate_limit"]["limit"] == 5000
        assert stats["requests"]["rate_limit_hits"] == 1


class TestFromConfig:
    """Building the client from loaded configuration."""

    def test_builds_cache_from_config(self) -> None:
        config = NebulaCacheConfig(
            cache=CacheServiceConfig(max_entries=42, cleanup_interval_seconds=0),
            github=GitHubClientConfig(user_agent="Nebula-Test"),
        )
        recorder = Recorder(httpx.Response(200, json={"login": "octo"}))

        github = GitHubAPIService.from_config(
            config, TOKEN, transport=httpx.MockTransport(recorder)
        )
        with github:
            github.get_user("octo")

        assert github.cache.config.max_entries == 42
        assert recorder.requests[0].headers["User-Agent"] == "Nebula-Test"
        github.cache.close()

    def test_middleware_config_disables_fallback(self, service, clock) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"name": "site"}),
            httpx.Response(500),
        )
        strict = MiddlewareConfig(fallback_on_error=False)
        with make_client(
            service, recorder, middleware=strict, retry=RetrySettings(max_attempts=1)
        ) as github:
            github.get_repository("octo", "site")
            clock.advance(500)
            with pytest.raises(RetryExhausted):
                github.get_repository("octo", "site")

    @pytest.mark.parametrize(
        "profile, expected_requests, falls_back",
        [
            (None, 4, True),
            ("development", 2, False),
        ],
    )
    def test_loaded_profile_changes_failure_handling(
        self, service, clock, sleeps, profile, expected_requests, falls_back
    ) -> None:
        """
        SCENARIO: Stale repository read while GitHub returns 500
        EXPECTED: Base config retries three times then serves cached data;
                  development retries once and raises
        """
        config = load_config(REPO_CONFIG, profile=profile)
        recorder = Recorder(
            httpx.Response(200, json={"name": "site"}),
            httpx.Response(500),
        )
        github = GitHubAPIService.from_config(
            config,
            TOKEN,
            cache_service=service,
            error_handler=ErrorHandler(
                RetryConfig.from_settings(config.github.retry), sleep=sleeps.append
            ),
            transport=httpx.MockTransport(recorder),
        )

        with github:
            github.get_repository("octo", "site")
            clock.advance(500)
            if falls_back:
                result = github.get_repository("octo", "site")
                assert result["_fallback"] is True
                assert result["name"] == "site"
            else:
                with pytest.raises(RetryExhausted):
                    github.get_repository("octo", "site")

        assert len(recorder.requests) == expected_requests
