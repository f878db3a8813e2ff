"""
Error Handler - Retry with Backoff for GitHub API Calls.

Provides:
    - Retry with exponential backoff for retryable GitHub errors
    - Rate-limit aware delays (wait for the reset when it is near)

Design Notes:
    - Non-retryable errors (404, 401, 422, ...) propagate immediately
    - A rate-limit reset further away than max_delay_seconds is not waited for
    - The cache layer never retries; only the HTTP client uses this
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from nebula_cache.config.models import RetrySettings
from nebula_cache.resilience.errors import (
    GitHubRateLimitError,
    get_retry_delay,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            exponential_base=settings.exponential_base,
        )


class ErrorHandler:
    """
    Retries GitHub calls that failed for transient reasons.

    Usage:
        handler = ErrorHandler(RetryConfig(max_attempts=5))
        repo = handler.retry(lambda: client.get("/repos/octo/site"), "get repo")
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize error handler.

        Args:
            retry_config: Configuration for retry logic
            sleep: Delay function (injectable for tests)
        """
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    def retry(
        self,
        func: Callable[[], T],
        operation_name: str = "operation",
    ) -> T:
        """
        Execute function with retry and exponential backoff.

        Args:
            func: Function to execute
            operation_name: Name for logging

        Returns:
            Result of successful execution

        Raises:
            RetryExhausted: When all attempts fail with retryable errors
            Exception: Any non-retryable error, unchanged
        """
        last_exception: Optional[Exception] = None

        for attempt in range(1, self.retry_config.max_attempts + 1):
            try:
                result = func()
                if attempt > 1:
                    logger.info(f"{operation_name} succeeded on attempt {attempt}")
                return result

            except Exception as e:
                if not is_retryable_error(e):
                    raise
                last_exception = e

                if attempt >= self.retry_config.max_attempts:
                    logger.error(f"{operation_name} failed after {attempt} attempts: {e}")
                    break

                delay = self._calculate_delay(e, attempt)
                if delay is None:
                    logger.error(
                        f"{operation_name} rate limited beyond "
                        f"{self.retry_config.max_delay_seconds}s, not retrying: {e}"
                    )
                    raise

                logger.warning(
                    f"{operation_name} failed (attempt {attempt}/{self.retry_config.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                self._sleep(delay)

        raise RetryExhausted(
            f"{operation_name} failed after {self.retry_config.max_attempts} attempts"
        ) from last_exception

    def _calculate_delay(self, error: Exception, attempt: int) -> Optional[float]:
        """Delay before the next attempt, or None when waiting is pointless."""
        delay = get_retry_delay(
            error,
            attempt,
            base_delay_seconds=self.retry_config.base_delay_seconds,
            exponential_base=self.retry_config.exponential_base,
        )
        if isinstance(error, GitHubRateLimitError):
            if delay > self.retry_config.max_delay_seconds:
                return None
            return delay
        return min(delay, self.retry_config.max_delay_seconds)
