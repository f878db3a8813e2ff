"""
Performance Package - Portfolio-level caching and optimization.

    - PortfolioPerformanceService: Cached, optimized portfolio documents
    - PortfolioMetrics: Load, hit and error counters
"""

from nebula_cache.performance.portfolio_performance import (
    PortfolioLoader,
    PortfolioMetrics,
    PortfolioPerformanceService,
    calculate_data_size,
    default_portfolio_loader,
)

__all__ = [
    "PortfolioLoader",
    "PortfolioMetrics",
    "PortfolioPerformanceService",
    "calculate_data_size",
    "default_portfolio_loader",
]
