"""
Portfolio Performance Service - Cached, optimized portfolio documents.

Layers a portfolio-specific key scheme and a set of data-shaping
optimizations over GitHubCacheService.

Design Notes:
    - Cache key: portfolio:{owner}/{repo}:{ref}, TTL from PortfolioPerformanceConfig
    - Optimizations run on a deep copy; a failing step leaves data unoptimized
    - Stale hits trigger one background reload per portfolio
    - Load times checked against configurable thresholds
"""

from __future__ import annotations

import copy
import json
import logging
import re
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set

from nebula_cache.caching.cache_entry import STALE_RATIO
from nebula_cache.caching.cache_keys import CacheKey
from nebula_cache.caching.cache_service import GitHubCacheService
from nebula_cache.config.models import NebulaCacheConfig, PortfolioPerformanceConfig

logger = logging.getLogger(__name__)

PERFORMANCE_VERSION = "1.0.0"

# Strings longer than this are truncated by aggressive optimization
MAX_CONTENT_LENGTH = 1000

SLOW_CONNECTIONS = ("slow", "2g")
MOBILE_MAX_WIDTH = 768
MOBILE_IMAGE_QUALITY = 80

_WHITESPACE = re.compile(r"\s+")


class PortfolioLoader(Protocol):
    """Loads the raw portfolio document for a repository."""

    def __call__(
        self,
        owner: str,
        repo: str,
        ref: str,
        template: Optional[str],
    ) -> Dict[str, Any]:
        ...


def default_portfolio_loader(
    owner: str,
    repo: str,
    ref: str,
    template: Optional[str],
) -> Dict[str, Any]:
    """Skeleton portfolio document used when no loader is supplied."""
    return {
        "repository": {"owner": owner, "repo": repo, "ref": ref},
        "content": {},
        "metadata": {
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "version": PERFORMANCE_VERSION,
        },
        "assets": [],
        "template": template or "default",
    }


def calculate_data_size(data: Any) -> int:
    """Serialized length of a document; 0 if it cannot be serialized."""
    try:
        return len(json.dumps(data, separators=(",", ":"), ensure_ascii=False))
    except (TypeError, ValueError):
        return 0


@dataclass
class PortfolioMetrics:
    """Counters for portfolio loads."""

    portfolio_loads: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    average_load_time: float = 0.0
    total_bytes_served: int = 0
    errors: int = 0

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return round(self.cache_hits / total * 100, 2) if total else 0.0

    @property
    def error_rate(self) -> float:
        return round(self.errors / self.portfolio_loads * 100, 2) if self.portfolio_loads else 0.0


class PortfolioPerformanceService:
    """
    Serves portfolio documents from cache and keeps them optimized.

    Usage:
        service = PortfolioPerformanceService(cache, loader=load_from_github)
        portfolio = service.get_optimized_portfolio("octo", "site", ref="main")
        portfolio["_performance"]["cached"]  # False first, True afterwards
    """

    def __init__(
        self,
        cache_service: GitHubCacheService,
        loader: Optional[PortfolioLoader] = None,
        config: Optional[PortfolioPerformanceConfig] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Initialize portfolio performance service.

        Args:
            cache_service: Cache shared with the GitHub layer
            loader: Produces raw portfolio documents (skeleton loader if None)
            config: Performance configuration
            executor: Runs background refreshes and asset preloads
        """
        self.cache = cache_service
        self.loader: PortfolioLoader = loader or default_portfolio_loader
        self.config = config or PortfolioPerformanceConfig()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="portfolio-performance"
        )

        self._lock = threading.Lock()
        self._metrics = PortfolioMetrics()
        self._start_time = time.time()
        self._performance_entries: Dict[str, float] = {}
        self._asset_cache: Dict[str, Dict[str, Any]] = {}
        self._refresh_queue: Set[str] = set()
        self._preloading = False

    @classmethod
    def from_config(
        cls,
        config: NebulaCacheConfig,
        cache_service: GitHubCacheService,
        loader: Optional[PortfolioLoader] = None,
        executor: Optional[Executor] = None,
    ) -> "PortfolioPerformanceService":
        """Build the service from the portfolio section of a loaded config."""
        return cls(cache_service, loader=loader, config=config.portfolio, executor=executor)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def get_optimized_portfolio(
        self,
        owner: str,
        repo: str,
        ref: str = "main",
        skip_cache: bool = False,
        template: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get an optimized portfolio document, from cache when possible.

        Args:
            owner: Repository owner
            repo: Repository name
            ref: Git ref the portfolio is built from
            skip_cache: Always reload and re-cache
            template: Template name passed to the loader

        Returns:
            Portfolio document with a ``_performance`` section

        Raises:
            Exception: Whatever the loader raises, after counting the error
        """
        start = time.perf_counter()
        portfolio_id = f"{owner}/{repo}"
        key = CacheKey.for_portfolio(owner, repo, ref)
        logger.info(f"Loading portfolio {portfolio_id}@{ref}")

        try:
            self._start_monitoring(portfolio_id)

            cached = None if skip_cache else self.cache.get(key)
            if cached is not None:
                with self._lock:
                    self._metrics.cache_hits += 1
                    self._performance_entries.pop(portfolio_id, None)
                logger.debug(f"Portfolio cache hit: {portfolio_id}")

                if cached.age > self.config.portfolio_cache_ttl_seconds * STALE_RATIO:
                    self._schedule_background_refresh(owner, repo, ref, template)

                return self.enhance_portfolio_data(cached.data, cached=True)

            with self._lock:
                self._metrics.cache_misses += 1

            portfolio = self.loader(owner, repo, ref, template)
            optimized = self.optimize_portfolio_data(portfolio)

            self.cache.set(key, optimized, ttl=self.config.portfolio_cache_ttl_seconds)

            load_time = time.perf_counter() - start
            self._update_metrics(load_time, optimized)
            self._end_monitoring(portfolio_id, load_time)

            if self.config.enable_preloading:
                self._schedule_asset_preloading(optimized)

            return self.enhance_portfolio_data(
                optimized, cached=False, load_time=load_time, optimized=True
            )

        except Exception as e:
            with self._lock:
                self._metrics.errors += 1
                self._performance_entries.pop(portfolio_id, None)
            logger.error(
                f"Portfolio loading failed for {portfolio_id}@{ref} "
                f"after {time.perf_counter() - start:.3f}s: {e}"
            )
            raise

    def invalidate_portfolio(self, owner: str, repo: str) -> int:
        """Drop every cached ref of a portfolio."""
        pattern = rf"^portfolio:{re.escape(owner)}/{re.escape(repo)}:"
        return self.cache.invalidate(pattern)

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize_portfolio_data(self, portfolio: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply the enabled optimizations to a copy of the document.

        Returns the unoptimized copy if any step fails.
        """
        start = time.perf_counter()
        data = copy.deepcopy(portfolio)

        try:
            if self.config.enable_image_optimization:
                data = self.optimize_images(data)
            if self.config.enable_asset_minification:
                data = self.minify_assets(data)
            if self.config.enable_code_splitting:
                data = self.apply_code_splitting(data)
            data = self.optimize_bundle_size(data)
        except Exception as e:
            logger.warning(f"Portfolio optimization failed, serving unoptimized data: {e}")
            return copy.deepcopy(portfolio)

        logger.debug(
            f"Portfolio data optimized in {(time.perf_counter() - start) * 1000:.0f}ms "
            f"({calculate_data_size(data)} bytes)"
        )
        return data

    def optimize_images(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Annotate image assets with responsive formats and sizes."""
        assets = data.get("assets")
        if assets:
            data["assets"] = [
                {
                    **asset,
                    "optimized": True,
                    "formats": [*self.config.image_formats, asset.get("format")],
                    "sizes": list(self.config.image_sizes),
                }
                if asset.get("type") == "image"
                else asset
                for asset in assets
            ]
        return data

    def minify_assets(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Collapse runs of whitespace in string content."""
        content = data.get("content")
        if isinstance(content, dict):
            for key, value in content.items():
                if isinstance(value, str):
                    content[key] = _WHITESPACE.sub(" ", value).strip()
        return data

    def apply_code_splitting(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data["bundles"] = {
            "main": {"size": 50_000, "critical": True},
            "components": {"size": 30_000, "lazy": True},
            "assets": {"size": 20_000, "lazy": True},
        }
        return data

    def optimize_bundle_size(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Fall back to aggressive optimization above max_bundle_size."""
        size = calculate_data_size(data)
        if size > self.config.max_bundle_size:
            logger.warning(
                f"Portfolio bundle size {size} exceeds threshold "
                f"{self.config.max_bundle_size}"
            )
            data = self.apply_aggressive_optimization(data)
        return data

    def apply_aggressive_optimization(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Drop debug metadata and truncate long string content."""
        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            metadata.pop("debug", None)

        content = data.get("content")
        if isinstance(content, dict):
            for key, value in content.items():
                if isinstance(value, str) and len(value) > MAX_CONTENT_LENGTH:
                    content[key] = value[:MAX_CONTENT_LENGTH] + "..."
        return data

    def optimize_for_client(
        self,
        portfolio: Dict[str, Any],
        connection: str = "fast",
        device_type: str = "desktop",
        screen_size: str = "large",
        supported_formats: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Tailor a portfolio document to a client's connection and device.

        Args:
            portfolio: Document to optimize (left unchanged)
            connection: "fast", "slow" or "2g"
            device_type: "desktop" or "mobile"
            screen_size: Reported screen size (logged only)
            supported_formats: Image formats the client can render

        Returns:
            New optimized document
        """
        formats = supported_formats or ["webp", "jpeg"]
        data = copy.deepcopy(portfolio)

        if connection in SLOW_CONNECTIONS:
            data = self.apply_aggressive_optimization(data)
            if data.get("assets"):
                data["assets"] = [a for a in data["assets"] if a.get("essential") is not False]

        if device_type == "mobile" and data.get("assets"):
            data["assets"] = [
                {**a, "max_width": MOBILE_MAX_WIDTH, "quality": MOBILE_IMAGE_QUALITY}
                if a.get("type") == "image"
                else a
                for a in data["assets"]
            ]

        if data.get("assets"):
            data["assets"] = [
                {**a, "selected_format": _best_format(a["formats"], formats)}
                if a.get("type") == "image" and a.get("formats")
                else a
                for a in data["assets"]
            ]

        logger.debug(
            f"Portfolio optimized for client (connection={connection}, "
            f"device={device_type}, screen={screen_size}): "
            f"{calculate_data_size(portfolio)} -> {calculate_data_size(data)} bytes"
        )
        return data

    def enhance_portfolio_data(
        self,
        data: Any,
        cached: bool = False,
        load_time: float = 0.0,
        optimized: bool = False,
    ) -> Dict[str, Any]:
        """Return a copy of the document with a ``_performance`` section."""
        enhanced = dict(data) if isinstance(data, dict) else {"data": data}
        enhanced["_performance"] = {
            "cached": cached,
            "load_time": load_time,
            "optimized": optimized,
            "timestamp": time.time(),
            "version": PERFORMANCE_VERSION,
        }
        return enhanced

    # ------------------------------------------------------------------
    # Statistics and lifecycle
    # ------------------------------------------------------------------

    def get_performance_stats(self) -> Dict[str, Any]:
        with self._lock:
            metrics = asdict(self._metrics)
            metrics["cache_hit_rate"] = self._metrics.cache_hit_rate
            metrics["error_rate"] = self._metrics.error_rate
            metrics["average_load_time"] = round(self._metrics.average_load_time, 4)
            asset_entries = len(self._asset_cache)
            refresh_queue = len(self._refresh_queue)

        return {
            "service": "portfolio-performance",
            "uptime": time.time() - self._start_time,
            "metrics": metrics,
            "cache": {
                "portfolio_entries": self.cache.get_stats().entries,
                "asset_entries": asset_entries,
                "preload_queue_size": refresh_queue,
            },
            "thresholds": self.config.thresholds.model_dump(),
            "optimizations": {
                "preloading": self.config.enable_preloading,
                "lazy_loading": self.config.enable_lazy_loading,
                "image_optimization": self.config.enable_image_optimization,
                "code_splitting": self.config.enable_code_splitting,
                "minification": self.config.enable_asset_minification,
            },
        }

    def get_preloaded_asset(self, url: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._asset_cache.get(url)

    def clear_caches(self) -> None:
        """Clear asset cache, refresh queue and monitoring state."""
        with self._lock:
            self._asset_cache.clear()
            self._refresh_queue.clear()
            self._performance_entries.clear()
        logger.info("Performance caches cleared")

    def close(self) -> None:
        self.clear_caches()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _update_metrics(self, load_time: float, data: Dict[str, Any]) -> None:
        with self._lock:
            m = self._metrics
            m.portfolio_loads += 1
            total = m.average_load_time * (m.portfolio_loads - 1) + load_time
            m.average_load_time = total / m.portfolio_loads
            m.total_bytes_served += calculate_data_size(data)

    def _start_monitoring(self, portfolio_id: str) -> None:
        if self.config.enable_performance_monitoring:
            with self._lock:
                self._performance_entries[portfolio_id] = time.perf_counter()

    def _end_monitoring(self, portfolio_id: str, load_time: float) -> None:
        with self._lock:
            started = self._performance_entries.pop(portfolio_id, None)
        if not self.config.enable_performance_monitoring or started is None:
            return

        total_time = time.perf_counter() - started
        thresholds = self.config.thresholds
        warnings: List[str] = []

        if load_time > thresholds.load_time_seconds:
            warnings.append(
                f"load time {load_time:.3f}s exceeds {thresholds.load_time_seconds}s"
            )
        if total_time > thresholds.render_time_seconds:
            warnings.append(
                f"render time {total_time:.3f}s exceeds {thresholds.render_time_seconds}s"
            )

        if warnings:
            logger.warning(f"Performance threshold exceeded for {portfolio_id}: {'; '.join(warnings)}")
        else:
            logger.debug(f"Portfolio {portfolio_id} loaded in {load_time:.3f}s")

    def _schedule_background_refresh(
        self,
        owner: str,
        repo: str,
        ref: str,
        template: Optional[str],
    ) -> None:
        refresh_key = f"{owner}/{repo}:{ref}"
        with self._lock:
            if refresh_key in self._refresh_queue:
                return
            self._refresh_queue.add(refresh_key)

        def refresh() -> None:
            try:
                self.get_optimized_portfolio(owner, repo, ref, skip_cache=True, template=template)
                logger.debug(f"Background refresh completed: {refresh_key}")
            except Exception as e:
                logger.warning(f"Background refresh failed for {refresh_key}: {e}")
            finally:
                with self._lock:
                    self._refresh_queue.discard(refresh_key)

        try:
            self._executor.submit(refresh)
        except RuntimeError:
            # Executor already shut down
            with self._lock:
                self._refresh_queue.discard(refresh_key)
            logger.warning(f"Background refresh dropped, executor closed: {refresh_key}")

    def _schedule_asset_preloading(self, data: Dict[str, Any]) -> None:
        with self._lock:
            if self._preloading:
                return
            self._preloading = True

        assets = [a for a in data.get("assets") or [] if a.get("preload") and a.get("url")]

        def preload() -> None:
            try:
                for asset in assets:
                    with self._lock:
                        if asset["url"] in self._asset_cache:
                            continue
                        self._asset_cache[asset["url"]] = {
                            "data": f"preloaded-{asset['url']}",
                            "timestamp": time.time(),
                            "size": asset.get("size", 1000),
                        }
                    logger.debug(f"Asset preloaded: {asset['url']}")
            finally:
                with self._lock:
                    self._preloading = False

        try:
            self._executor.submit(preload)
        except RuntimeError:
            with self._lock:
                self._preloading = False
            logger.warning("Asset preloading dropped, executor closed")


def _best_format(available: List[Any], supported: List[str]) -> Any:
    """First available format the client supports, else the last available."""
    for fmt in available:
        if fmt in supported:
            return fmt
    return available[-1]
