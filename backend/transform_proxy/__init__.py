"""
Transform Proxy Module

Fetches remote images once, caches them on disk, and serves transformed
variants produced by an external image tool.

Features:
- Exclusive-create cache fills (one upstream fetch per source URL)
- Size-bounded eviction, newest entries kept
- Hot-reloadable YAML transform catalog
"""

from .routes_fastapi import router
from .cache_store import CacheStore, EvictionScheduler
from .catalog import CatalogHolder, TransformCatalog
from .config import ProxyConfig
from .service import TransformProxyService

__all__ = [
    "router",
    "CacheStore",
    "EvictionScheduler",
    "CatalogHolder",
    "TransformCatalog",
    "ProxyConfig",
    "TransformProxyService",
]
