"""
Resilience Package - GitHub Error Taxonomy and Retry.

This package provides:
    - Typed GitHub API errors parsed from HTTP responses
    - ErrorHandler: Retry with exponential backoff for transient failures

Design Principles:
    - Fail fast for permanent errors
    - Retry with backoff for transient errors
    - Degrading to cached data is the middleware's job, not the retry loop's
"""

from nebula_cache.resilience.error_handler import ErrorHandler, RetryConfig, RetryExhausted
from nebula_cache.resilience.errors import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubConflictError,
    GitHubNetworkError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
    GitHubValidationError,
    is_retryable_error,
    parse_github_error,
)

__all__ = [
    "ErrorHandler",
    "GitHubAPIError",
    "GitHubAuthError",
    "GitHubConflictError",
    "GitHubNetworkError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubServerError",
    "GitHubValidationError",
    "RetryConfig",
    "RetryExhausted",
    "is_retryable_error",
    "parse_github_error",
]
