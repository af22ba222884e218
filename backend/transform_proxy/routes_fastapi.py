"""
Transform Proxy API Routes

Provides endpoints for:
- Transforming remote images: GET /<transform>/<width>/<height>/<source-url>
- Health check with cache statistics
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from .errors import ProxyError
from .service import TransformProxyService

logger = logging.getLogger(__name__)

# ============================================
# Response Models
# ============================================

class CacheStats(BaseModel):
    """Cache usage as seen by a directory scan"""
    total_entries: int
    total_size_bytes: int
    total_size_mb: float
    max_size_bytes: int

class HealthResponse(BaseModel):
    status: str
    service: str
    transforms: List[str]
    cache_stats: CacheStats


# ============================================
# Router
# ============================================

router = APIRouter(tags=["Transform Proxy"])


def get_service(request: Request) -> TransformProxyService:
    return request.app.state.proxy


def _request_target(request: Request) -> str:
    """The undecoded path plus query string, as the client sent it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        path += "?" + query.decode("latin-1")
    return path


# ============================================
# Endpoints
# ============================================

@router.get("/favicon.ico")
async def favicon():
    raise HTTPException(status_code=404, detail="404 Not Found")


@router.get("/health", response_model=HealthResponse)
async def health_check(service: TransformProxyService = Depends(get_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        service="transform-proxy",
        transforms=service.catalog.current.names(),
        cache_stats=CacheStats(**service.get_stats()),
    )


@router.get("/{full_path:path}")
async def transform_image(request: Request, service: TransformProxyService = Depends(get_service)):
    """
    Fetch, cache and transform a remote image.

    Example:
        GET /thumb/100/50/example.com/a.jpg
        -> fetches https://example.com/a.jpg once, runs the "thumb" transform
    """
    target = _request_target(request)
    try:
        return await service.handle(target)
    except ProxyError as e:
        if e.status_code >= 500:
            logger.warning(f"[Proxy] {e.status_code} for {target[:80]}: {e.message}")
        else:
            logger.debug(f"[Proxy] {e.status_code} for {target[:80]}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message, headers=e.headers)
