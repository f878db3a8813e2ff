"""
Value Objects for Domain Layer.

Request and response shapes exchanged between the cache layer and the
GitHub REST client. Both are immutable.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

HTTP_NOT_MODIFIED = 304


class RequestOptions(BaseModel):
    """Extra options handed to a wrapped request function."""

    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def conditional(
        cls,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> "RequestOptions":
        """Build options carrying conditional request validators."""
        headers: Dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified
        return cls(headers=headers)


class GitHubResponse(BaseModel):
    """
    A GitHub REST response reduced to what the cache needs.

    Header names are matched case-insensitively.
    """

    status: int = 200
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def not_modified(self) -> bool:
        return self.status == HTTP_NOT_MODIFIED

    @property
    def etag(self) -> Optional[str]:
        return self.header("etag")

    @property
    def last_modified(self) -> Optional[str]:
        return self.header("last-modified")

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @classmethod
    def coerce(cls, result: Any) -> "GitHubResponse":
        """
        Normalise whatever a request function returned.

        Response-like objects (anything with a ``status`` attribute) keep
        their status, data and headers; any other value is treated as a
        200 response whose data is the value itself.
        """
        if isinstance(result, cls):
            return result
        if hasattr(result, "status"):
            headers = getattr(result, "headers", None) or {}
            return cls(
                status=result.status,
                data=getattr(result, "data", None),
                headers={str(k): str(v) for k, v in dict(headers).items()},
            )
        return cls(status=200, data=result)
