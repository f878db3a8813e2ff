"""
Cache Entry - A single cached GitHub payload with its metadata.

Design Notes:
    - Times are epoch seconds supplied by the owning service's clock
    - Size is an estimate of the serialized payload (UTF-16, 2 bytes/char)
    - Staleness starts at 80% of the TTL; expiry at 100%
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

# Fraction of the TTL after which an entry is considered stale
STALE_RATIO = 0.8

# Size assumed for payloads that cannot be serialized
DEFAULT_ENTRY_SIZE = 1000


def calculate_size(data: Any) -> int:
    """
    Approximate the memory footprint of a payload in bytes.

    Never raises: payloads that cannot be serialized are counted as
    DEFAULT_ENTRY_SIZE.
    """
    try:
        serialized = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return DEFAULT_ENTRY_SIZE
    return len(serialized) * 2


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    data: Any
    timestamp: float
    ttl: float
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    size: int = field(default=0)
    access_count: int = 0
    last_accessed: float = 0.0
    # Monotonic counter used to order accesses that share a timestamp
    access_seq: int = 0

    def __post_init__(self) -> None:
        self.size = calculate_size(self.data)
        if not self.last_accessed:
            self.last_accessed = self.timestamp

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_expired(self, now: float) -> bool:
        """Check if entry has outlived its TTL."""
        return self.age(now) > self.ttl

    def is_stale(self, now: float) -> bool:
        """Check if entry should be refreshed in the background."""
        return self.age(now) > self.ttl * STALE_RATIO

    def accessed(self, now: float, seq: int) -> None:
        """Record a successful read."""
        self.access_count += 1
        self.last_accessed = now
        self.access_seq = seq

    def touch(self, now: float) -> None:
        """Restart the TTL without replacing data (304 Not Modified)."""
        self.timestamp = now

    def update(
        self,
        data: Any,
        now: float,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        """
        Replace the payload.

        Validators that are not supplied keep their previous value.
        The size is recomputed from the new payload.
        """
        self.data = data
        self.timestamp = now
        self.etag = etag or self.etag
        self.last_modified = last_modified or self.last_modified
        self.size = calculate_size(data)
