"""
Fetch-and-Populate

Fills a cache entry from `https://<source>` exactly once per key.

The request that wins the exclusive create streams the body into the
partial file and commits it. Requests that lose wait for the committed
entry with exponential backoff; if the winner gives up they take over the
fill, and if nothing shows up before the fill timeout they fail with a
retryable error.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Tuple

import httpx

from .cache_store import CacheStore, EntryExistsError, PartialEntry
from .errors import CacheFillTimeoutError, CacheStoreError, UpstreamError
from .request_parser import RequestDescriptor

logger = logging.getLogger(__name__)

MAX_POLL_INTERVAL = 1.0


def create_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """HTTP client for fetching source images."""
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"Accept": "image/*,*/*;q=0.8"},
    )


class SourceFetcher:
    """Ensures the source of a request is present in the cache store."""

    def __init__(
        self,
        store: CacheStore,
        http_client: httpx.AsyncClient,
        fill_timeout: float = 30.0,
        poll_interval: float = 0.05,
        stale_after: float = 120.0,
        on_fill: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.http_client = http_client
        self.fill_timeout = fill_timeout
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self.on_fill = on_fill

    async def ensure_cached(self, request: RequestDescriptor) -> Tuple[Path, bool]:
        """
        Return the cached source path and whether it was already cached.

        Raises:
            UpstreamError: network failure or non-2xx upstream status.
            CacheStoreError: cache directory I/O failure.
            CacheFillTimeoutError: another request's fill did not finish in time.
        """
        key = request.cache_key
        path = self.store.lookup(key)
        if path is not None:
            logger.debug(f"[Fetcher] Cache hit: {key}")
            return path, True

        deadline = time.monotonic() + self.fill_timeout
        delay = self.poll_interval
        while True:
            try:
                entry = self.store.create(key)
            except EntryExistsError:
                path = self.store.lookup(key)
                if path is not None:
                    return path, True
            else:
                with entry:
                    path = await self._fill(request, entry)
                if self.on_fill is not None:
                    self.on_fill()
                return path, False

            # Someone else is filling this key
            if time.monotonic() >= deadline:
                raise CacheFillTimeoutError(f"Timed out waiting for cache fill: {request.source}")
            self.store.remove_stale_partial(key, self.stale_after)
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_POLL_INTERVAL)

    async def _fill(self, request: RequestDescriptor, entry: PartialEntry) -> Path:
        url = request.upstream_url
        logger.info(f"[Fetcher] Fetching: {url[:80]}")
        try:
            async with self.http_client.stream("GET", url) as response:
                if not response.is_success:
                    logger.warning(f"[Fetcher] HTTP error {response.status_code}: {url[:80]}")
                    raise UpstreamError(
                        f"Upstream failed HttpStatus: {response.status_code} {response.reason_phrase}",
                        upstream_status=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    entry.write(chunk)
        except httpx.HTTPError as e:
            logger.warning(f"[Fetcher] Fetch error: {url[:80]}: {e}")
            raise UpstreamError(f"Upstream failed Get: {e}") from e
        except OSError as e:
            raise CacheStoreError(f"Cache write failed: {e}") from e

        # fsync can take a while on large sources
        path = await asyncio.to_thread(entry.commit)
        logger.info(f"[Fetcher] Cached: {url[:80]} ({entry.bytes_written} bytes)")
        return path
