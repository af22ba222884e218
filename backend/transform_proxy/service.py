"""
Transform Proxy Service

Ties the pipeline together for one request:

    parse path -> resolve transform -> ensure source cached
        -> run transform -> stream artifact
"""

import logging
from typing import Optional

import httpx
from fastapi.responses import StreamingResponse

from .cache_store import CacheStore, EvictionScheduler
from .catalog import CatalogHolder
from .config import ProxyConfig
from .fetcher import SourceFetcher, create_http_client
from .request_parser import parse_request_path
from .streamer import open_artifact, stream_artifact
from .transformer import TransformInvoker

logger = logging.getLogger(__name__)


class TransformProxyService:
    """Owns the cache store, catalog, fetcher and transform invoker."""

    def __init__(
        self,
        config: ProxyConfig,
        catalog: Optional[CatalogHolder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.store = CacheStore(config.cache_dir)
        self.eviction = EvictionScheduler(self.store, config.cache_max_bytes)

        if catalog is None:
            catalog = CatalogHolder(config.catalog_path)
            catalog.reload()
        self.catalog = catalog

        self.http_client = http_client or create_http_client(config.upstream_timeout)
        self.fetcher = SourceFetcher(
            self.store,
            self.http_client,
            fill_timeout=config.fill_timeout,
            poll_interval=config.fill_poll_interval,
            stale_after=config.partial_stale_after,
            on_fill=self.eviction.trigger,
        )
        self.invoker = TransformInvoker(
            self.catalog,
            command=config.transform_command,
            scratch_dir=config.scratch_dir,
            scratch_suffix=config.scratch_suffix,
            timeout=config.transform_timeout,
            thread_env=config.thread_env,
        )

    async def handle(self, raw_path: str) -> StreamingResponse:
        """
        Serve one transform request.

        Raises:
            ProxyError: any request failure, carrying its HTTP status.
        """
        request = parse_request_path(raw_path)

        # Resolve against the current catalog snapshot before any I/O
        args = self.invoker.resolve(request.transform, request.width, request.height)

        source_path, hit = await self.fetcher.ensure_cached(request)
        cache_header = {"X-Cache": "HIT" if hit else "MISS"}

        if args is None:
            handle = open_artifact(str(source_path), scratch=False)
        else:
            scratch = await self.invoker.run(args, str(source_path))
            handle = open_artifact(scratch, scratch=True)

        return stream_artifact(
            handle,
            content_type=self.config.content_type,
            chunk_size=self.config.chunk_size,
            extra_headers=cache_header,
        )

    def reload_catalog(self) -> bool:
        """Reload the transform catalog, keeping the old one on failure."""
        return self.catalog.reload(strict=False)

    def get_stats(self) -> dict:
        stats = self.store.stats()
        stats["max_size_bytes"] = self.config.cache_max_bytes
        return stats

    async def close(self) -> None:
        await self.eviction.wait_idle()
        await self.http_client.aclose()
