"""
Configuration Models - Pydantic Models for Type-Safe Config.

All configuration is validated at load time using Pydantic.
Durations are expressed in seconds.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class CacheServiceConfig(BaseModel):
    """Configuration for the GitHub cache service."""

    # Size limits
    max_entries: int = Field(default=1000, ge=1)
    max_memory_mb: float = Field(default=50.0, gt=0)

    # TTL per key kind
    default_ttl_seconds: float = Field(default=300.0, gt=0)
    repository_ttl_seconds: float = Field(default=600.0, gt=0)
    content_ttl_seconds: float = Field(default=180.0, gt=0)
    user_ttl_seconds: float = Field(default=900.0, gt=0)

    # Behaviour
    enable_conditional_requests: bool = True
    enable_background_refresh: bool = True
    refresh_batch_size: int = Field(default=5, ge=1)
    refresh_workers: int = Field(default=2, ge=1)

    # Sweep (0 disables the timer)
    cleanup_interval_seconds: float = Field(default=300.0, ge=0)
    max_age_seconds: float = Field(default=3600.0, gt=0)


class MiddlewareConfig(BaseModel):
    """Defaults applied by the cache middleware when a call site is silent."""

    enable_conditional_requests: bool = True
    fallback_on_error: bool = False


class RetrySettings(BaseModel):
    """Retry policy used by the GitHub client."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    exponential_base: float = Field(default=2.0, ge=1)


class GitHubClientConfig(BaseModel):
    """Configuration for the GitHub REST client."""

    base_url: str = "https://api.github.com"
    timeout_seconds: float = Field(default=10.0, gt=0)
    user_agent: str = "Nebula-Portfolio-Platform"
    enable_caching: bool = True
    retry: RetrySettings = Field(default_factory=RetrySettings)

    # Multi-path content reads
    enable_parallel_fetching: bool = True
    batch_size: int = Field(default=10, ge=1)
    max_concurrent_requests: int = Field(default=5, ge=1)
    batch_pause_seconds: float = Field(default=0.1, ge=0)


class PerformanceThresholds(BaseModel):
    """Thresholds above which portfolio loads are reported."""

    load_time_seconds: float = Field(default=2.0, gt=0)
    render_time_seconds: float = Field(default=1.0, gt=0)
    bundle_size: int = Field(default=500_000, ge=0)


class PortfolioPerformanceConfig(BaseModel):
    """Configuration for the portfolio performance service."""

    portfolio_cache_ttl_seconds: float = Field(default=600.0, gt=0)
    asset_cache_ttl_seconds: float = Field(default=1800.0, gt=0)
    metadata_cache_ttl_seconds: float = Field(default=300.0, gt=0)

    enable_preloading: bool = True
    enable_lazy_loading: bool = True
    enable_image_optimization: bool = True
    enable_code_splitting: bool = True
    enable_asset_minification: bool = True
    max_bundle_size: int = Field(default=250_000, ge=0)

    enable_performance_monitoring: bool = True
    thresholds: PerformanceThresholds = Field(default_factory=PerformanceThresholds)

    image_formats: List[str] = Field(default_factory=lambda: ["webp", "avif"])
    image_sizes: List[str] = Field(
        default_factory=lambda: ["320w", "640w", "1024w", "1920w"]
    )


class NebulaCacheConfig(BaseModel):
    """Root configuration object."""

    version: str = "1.0"
    cache: CacheServiceConfig = Field(default_factory=CacheServiceConfig)
    middleware: MiddlewareConfig = Field(default_factory=MiddlewareConfig)
    github: GitHubClientConfig = Field(default_factory=GitHubClientConfig)
    portfolio: PortfolioPerformanceConfig = Field(
        default_factory=PortfolioPerformanceConfig,
    )
