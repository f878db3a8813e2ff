"""
Cache Keys - Tagged keys for GitHub API responses.

A key carries its kind (content, repository, user, portfolio, default) from
the moment it is built, so the cache service never has to guess the TTL
class from the key text later on.

Key Format:
    github:{endpoint}:{k1=v1&k2=v2}:{token_hash}

    Example: "github:repos/octo/site:ref=main:9f86d081"
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

ANONYMOUS_TOKEN = "anonymous"
TOKEN_HASH_LENGTH = 8


class KeyKind(Enum):
    """TTL class of a cached resource."""

    CONTENT = "content"
    REPOSITORY = "repository"
    USER = "user"
    PORTFOLIO = "portfolio"
    DEFAULT = "default"

    @classmethod
    def classify(cls, text: str) -> "KeyKind":
        """Classify an endpoint (or a free-form key) by the resource it names."""
        if "/contents/" in text:
            return cls.CONTENT
        if "repos/" in text:
            return cls.REPOSITORY
        if "user" in text:
            return cls.USER
        return cls.DEFAULT


def hash_token(token: Optional[str]) -> str:
    """Reduce an access token to a short, non-reversible discriminator."""
    if not token:
        return ANONYMOUS_TOKEN
    return hashlib.sha256(token.encode()).hexdigest()[:TOKEN_HASH_LENGTH]


@dataclass(frozen=True)
class CacheKey:
    """An immutable cache key with its kind."""

    value: str
    kind: KeyKind = KeyKind.DEFAULT

    def __str__(self) -> str:
        return self.value

    @classmethod
    def for_endpoint(
        cls,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        token: Optional[str] = "",
    ) -> "CacheKey":
        """
        Build the key for a GitHub REST endpoint.

        Parameters are sorted by name so insertion order never matters.
        Parameters whose value is None are left out.
        """
        pairs = sorted(
            (str(name), value)
            for name, value in (params or {}).items()
            if value is not None
        )
        param_string = "&".join(f"{name}={_render(value)}" for name, value in pairs)
        value = f"github:{endpoint}:{param_string}:{hash_token(token)}"
        return cls(value=value, kind=KeyKind.classify(endpoint))

    @classmethod
    def for_portfolio(cls, owner: str, repo: str, ref: str = "main") -> "CacheKey":
        return cls(value=f"portfolio:{owner}/{repo}:{ref}", kind=KeyKind.PORTFOLIO)

    @classmethod
    def from_string(cls, raw: str) -> "CacheKey":
        return cls(value=raw, kind=KeyKind.classify(raw))


KeyLike = Union[str, CacheKey]


def as_cache_key(key: KeyLike) -> CacheKey:
    if isinstance(key, CacheKey):
        return key
    return CacheKey.from_string(key)


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_render(v) for v in value)
    return str(value)

