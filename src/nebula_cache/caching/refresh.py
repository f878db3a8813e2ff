"""
Background Refresher - Deferred refresh of stale cache entries.

Keys are queued at most once while pending and drained in batches on an
executor, so a stale read never waits for the upstream call.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

RefreshFn = Callable[..., Any]


class BackgroundRefresher:
    """
    Queue of keys waiting for a background refresh.

    The actual refresh is delegated to ``handler(key, refresh_fn)``, which
    the cache service supplies. Handler errors are logged and dropped.
    """

    def __init__(
        self,
        executor: Executor,
        handler: Callable[[str, RefreshFn], None],
        batch_size: int = 5,
    ) -> None:
        self._executor = executor
        self._handler = handler
        self._batch_size = batch_size
        self._pending: Dict[str, RefreshFn] = {}
        self._lock = threading.Lock()
        self._draining = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def schedule(self, key: str, refresh_fn: RefreshFn) -> bool:
        """
        Queue a key for refresh.

        Returns:
            False if the key was already pending
        """
        with self._lock:
            if key in self._pending:
                return False
            self._pending[key] = refresh_fn
            start = not self._draining
            self._draining = True

        logger.debug(f"Background refresh scheduled: {key}")
        if start:
            try:
                self._executor.submit(self._drain)
            except RuntimeError:
                # Executor already shut down
                with self._lock:
                    self._draining = False
                    self._pending.pop(key, None)
                logger.warning(f"Background refresh dropped, executor closed: {key}")
                return False
        return True

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def _next_batch(self) -> List[Tuple[str, RefreshFn]]:
        with self._lock:
            batch = list(self._pending.items())[: self._batch_size]
            for key, _ in batch:
                del self._pending[key]
            if not batch:
                self._draining = False
            return batch

    def _drain(self) -> None:
        while True:
            batch = self._next_batch()
            if not batch:
                return
            for key, refresh_fn in batch:
                try:
                    self._handler(key, refresh_fn)
                except Exception as e:
                    logger.warning(f"Background refresh failed for {key}: {e}")
