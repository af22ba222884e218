"""
Response Streamer

Serves the final artifact from disk in chunks. A scratch artifact is
unlinked as soon as it is open: the open handle keeps the bytes readable,
and nothing is left behind if the client goes away mid-response.
"""

import logging
import os
from email.utils import formatdate
from typing import BinaryIO, Iterator, Optional

from fastapi.responses import StreamingResponse

from .errors import CacheStoreError

logger = logging.getLogger(__name__)


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    try:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


def open_artifact(path: str, scratch: bool) -> BinaryIO:
    """
    Open the artifact for streaming.

    A scratch artifact is removed right after opening, whether or not the
    open succeeded.
    """
    try:
        handle = open(path, "rb")
    except OSError as e:
        raise CacheStoreError(f"Upstream failed open: {e}") from e
    finally:
        if scratch:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[Proxy] Failed to remove scratch file {path}: {e}")
    return handle


def stream_artifact(
    handle: BinaryIO,
    content_type: str = "image/jpeg",
    chunk_size: int = 64 * 1024,
    extra_headers: Optional[dict] = None,
) -> StreamingResponse:
    """Build the streaming response for an open artifact."""
    headers = {
        # The original artifact's timestamp is not tracked
        "Last-Modified": formatdate(usegmt=True),
    }
    try:
        headers["Content-Length"] = str(os.fstat(handle.fileno()).st_size)
    except OSError:
        pass
    if extra_headers:
        headers.update(extra_headers)

    return StreamingResponse(
        _iter_file(handle, chunk_size),
        media_type=content_type,
        headers=headers,
    )
