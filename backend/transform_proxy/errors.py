"""
Transform Proxy Errors

Every failure a single request can hit is a ProxyError carrying the HTTP
status the route layer answers with:

- 400: malformed path, unparseable or out-of-range width/height
- 502: upstream fetch, cache I/O, or transform failures
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for request-scoped failures."""

    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def headers(self) -> Optional[dict]:
        return None


class BadRequestError(ProxyError):
    status_code = 400


class InvalidDimensionError(BadRequestError):
    """Width or height that is not an integer, or is outside the allowed range."""

    def __init__(self, field: str, value: str, unparseable: bool, message: str):
        super().__init__(message)
        self.field = field
        self.value = value
        self.unparseable = unparseable


class UpstreamError(ProxyError):
    """Fetching the source image failed (network error or non-2xx status)."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class CacheStoreError(ProxyError):
    pass


class CacheFillTimeoutError(CacheStoreError):
    """Another request is still filling the entry; the client may retry."""

    retry_after_seconds = 1

    @property
    def headers(self) -> Optional[dict]:
        return {"Retry-After": str(self.retry_after_seconds)}


class TransformError(ProxyError):
    pass


class UnknownTransformError(TransformError):
    def __init__(self, name: str):
        super().__init__(f"Unknown transform: {name}")
        self.name = name


class CatalogError(Exception):
    """The transform catalog could not be loaded."""
