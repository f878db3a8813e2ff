"""
Configuration Package - Models and Loaders.

Configuration Structure:
    - NebulaCacheConfig: Root configuration object
    - CacheServiceConfig: Cache limits, TTLs, sweep and refresh settings
    - MiddlewareConfig: Per-call defaults for the request wrapper
    - GitHubClientConfig: HTTP client and retry settings
    - PortfolioPerformanceConfig: Portfolio cache and optimisation settings

Design Principles:
    - Type-safe via Pydantic
    - Validation on load (fail fast)
    - Profiles stored next to the base file, merged over it
"""

from nebula_cache.config.loader import (
    available_profiles,
    load_config,
    load_config_from_dict,
)
from nebula_cache.config.models import (
    CacheServiceConfig,
    GitHubClientConfig,
    MiddlewareConfig,
    NebulaCacheConfig,
    PerformanceThresholds,
    PortfolioPerformanceConfig,
    RetrySettings,
)

__all__ = [
    "CacheServiceConfig",
    "GitHubClientConfig",
    "MiddlewareConfig",
    "NebulaCacheConfig",
    "PerformanceThresholds",
    "PortfolioPerformanceConfig",
    "RetrySettings",
    "available_profiles",
    "load_config",
    "load_config_from_dict",
]
