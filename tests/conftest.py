"""
Pytest Configuration and Shared Fixtures.

This module contains fixtures available to all tests.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future
from typing import Any, Callable, List

import pytest

from nebula_cache.caching.cache_service import GitHubCacheService
from nebula_cache.config.models import CacheServiceConfig

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Collects submitted work until run_all() is called."""

    def __init__(self) -> None:
        self.submitted: List[Callable[[], Any]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        self.submitted.append(lambda: fn(*args, **kwargs))
        return Future()

    def run_all(self) -> None:
        while self.submitted:
            self.submitted.pop(0)()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def manual_executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def cache_config() -> CacheServiceConfig:
    """Cache config without the sweep timer."""
    return CacheServiceConfig(cleanup_interval_seconds=0)


@pytest.fixture
def cache(cache_config, clock, inline_executor):
    """Cache service on a fake clock with inline background refresh."""
    service = GitHubCacheService(cache_config, clock=clock, executor=inline_executor)
    yield service
    service.close()
