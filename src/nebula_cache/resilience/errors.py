"""
GitHub API Errors - Typed failures parsed from HTTP responses.

Provides:
    - An error hierarchy rooted at GitHubAPIError
    - parse_github_error(): map an httpx response to the right error class
    - is_retryable_error() / get_retry_delay(): inputs for the retry policy
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

RETRYABLE_STATUSES = (502, 503, 504)


class GitHubAPIError(Exception):
    """Base class for GitHub API failures."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        endpoint: Optional[str] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.endpoint = endpoint
        self.response = response
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "endpoint": self.endpoint,
            "timestamp": self.timestamp,
        }


class GitHubAuthError(GitHubAPIError):
    """Authentication or authorization failure (401, 403)."""


class GitHubNotFoundError(GitHubAPIError):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(message, 404, endpoint, response)


class GitHubRateLimitError(GitHubAPIError):
    """Primary rate limit exhausted."""

    def __init__(
        self,
        message: str,
        reset_time: int,
        remaining: int = 0,
        limit: int = 0,
        status: int = 403,
        endpoint: Optional[str] = None,
    ) -> None:
        super().__init__(message, status, endpoint)
        self.reset_time = reset_time
        self.remaining = remaining
        self.limit = limit

    @property
    def reset_date(self) -> datetime:
        return datetime.fromtimestamp(self.reset_time, tz=timezone.utc)

    @property
    def time_until_reset(self) -> float:
        """Seconds until the limit resets (never negative)."""
        return max(0.0, self.reset_time - time.time())

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            reset_time=self.reset_time,
            reset_date=self.reset_date.isoformat(),
            remaining=self.remaining,
            limit=self.limit,
            time_until_reset=self.time_until_reset,
        )
        return result


class GitHubConflictError(GitHubAPIError):
    """Resource changed underneath the request (409)."""


class GitHubValidationError(GitHubAPIError):
    """Request rejected by GitHub validation (422)."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Any]] = None,
        endpoint: Optional[str] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(message, 422, endpoint, response)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


class GitHubNetworkError(GitHubAPIError):
    """Transport-level failure; no HTTP status available."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class GitHubServerError(GitHubAPIError):
    """GitHub-side failure (5xx)."""


def _int_header(response: httpx.Response, name: str) -> int:
    try:
        return int(response.headers.get(name, 0))
    except ValueError:
        return 0


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def parse_github_error(
    response: httpx.Response,
    endpoint: Optional[str] = None,
) -> GitHubAPIError:
    """
    Build the error matching a failed GitHub response.

    Args:
        response: Response with a 4xx/5xx status
        endpoint: API path that was requested

    Returns:
        Specific GitHubAPIError subclass instance
    """
    status = response.status_code
    body = _json_body(response)
    message = body.get("message") or f"GitHub API error {status}"

    if status in (403, 429):
        remaining = _int_header(response, "x-ratelimit-remaining")
        reset = _int_header(response, "x-ratelimit-reset")
        if "x-ratelimit-remaining" in response.headers and remaining == 0 and reset > 0:
            return GitHubRateLimitError(
                "GitHub API rate limit exceeded",
                reset_time=reset,
                remaining=remaining,
                limit=_int_header(response, "x-ratelimit-limit"),
                status=status,
                endpoint=endpoint,
            )

    if status == 401:
        return GitHubAuthError(
            "GitHub authentication failed - invalid or expired token",
            status,
            endpoint,
            response,
        )
    if status == 403:
        return GitHubAuthError(
            "GitHub authorization failed - insufficient permissions",
            status,
            endpoint,
            response,
        )
    if status == 404:
        return GitHubNotFoundError("GitHub resource not found", endpoint, response)
    if status == 409:
        return GitHubConflictError(
            "GitHub resource conflict - resource may have been modified",
            status,
            endpoint,
            response,
        )
    if status == 422:
        return GitHubValidationError(
            "GitHub validation failed",
            body.get("errors") or [],
            endpoint,
            response,
        )
    if status >= 500:
        return GitHubServerError("GitHub server error", status, endpoint, response)

    return GitHubAPIError(message, status, endpoint, response)


def is_retryable_error(error: BaseException) -> bool:
    """Rate-limit, server and network errors are worth another attempt."""
    if isinstance(error, (GitHubRateLimitError, GitHubServerError, GitHubNetworkError)):
        return True
    return getattr(error, "status", None) in RETRYABLE_STATUSES


def get_retry_delay(
    error: BaseException,
    attempt: int,
    base_delay_seconds: float = 1.0,
    exponential_base: float = 2.0,
) -> float:
    """
    Seconds to wait before the next attempt.

    Rate-limit errors wait for the reset (plus one second); everything else
    backs off exponentially from base_delay_seconds. ``attempt`` is 1-based.
    """
    if isinstance(error, GitHubRateLimitError):
        return max(1.0, error.time_until_reset + 1.0)
    return base_delay_seconds * (exponential_base ** (attempt - 1))
