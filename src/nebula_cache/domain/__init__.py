"""
Domain Layer - Value Objects shared across the cache layer.

Value Objects:
    - RequestOptions: Headers passed to a wrapped request function
    - GitHubResponse: Status, data and headers of a GitHub REST response
"""

from nebula_cache.domain.value_objects import (
    HTTP_NOT_MODIFIED,
    GitHubResponse,
    RequestOptions,
)

__all__ = ["HTTP_NOT_MODIFIED", "GitHubResponse", "RequestOptions"]
