"""
Source Cache Store

File-based cache of fetched source images with size-bounded eviction.

Cache structure:
cache_dir/
├── example.com%2Fa.jpg        # committed entries, one per source URL
├── ...
└── .partial/
    └── example.com%2Fb.jpg    # fill in progress (exclusive-create lock)

Entries are immutable once committed. A fill writes into `.partial/<key>`,
opened with O_CREAT|O_EXCL so only one writer per key can exist, and is
published with an atomic rename. Readers only ever look at committed names,
so a crashed or failed fill is never served.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import CacheStoreError

logger = logging.getLogger(__name__)

PARTIAL_DIR_NAME = ".partial"


class EntryExistsError(CacheStoreError):
    """The entry is committed, or another writer holds the partial file."""


@dataclass(frozen=True)
class CachedFile:
    """A committed entry as seen by a directory scan."""
    key: str
    size_bytes: int
    mtime_ns: int


class PartialEntry:
    """
    Exclusive write handle for one cache fill.

    Nothing is visible to readers until commit(). Leaving the context
    without committing discards the partial file.
    """

    def __init__(self, store: "CacheStore", key: str, fd: int):
        self.store = store
        self.key = key
        self.path = store.partial_path(key)
        self.file = os.fdopen(fd, "wb")
        st = os.fstat(fd)
        self._identity = (st.st_dev, st.st_ino)
        self.bytes_written = 0
        self.committed = False

    def write(self, chunk: bytes) -> None:
        self.file.write(chunk)
        # Flushing bumps the partial's mtime, which waiters read as liveness
        self.file.flush()
        self.bytes_written += len(chunk)

    def owns_path(self) -> bool:
        """Whether the partial path still names the file this writer opened."""
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return False
        return (st.st_dev, st.st_ino) == self._identity

    def commit(self) -> Path:
        """Flush and atomically publish the entry under its final name."""
        final_path = self.store.path_for(self.key)
        try:
            self.file.flush()
            os.fsync(self.file.fileno())
            self.file.close()
            if not self.owns_path():
                raise CacheStoreError(f"Partial file was taken over by another fill: {self.key}")
            os.replace(self.path, final_path)
        except CacheStoreError:
            self.discard()
            raise
        except OSError as e:
            self.discard()
            raise CacheStoreError(f"Cache commit failed: {e}") from e
        self.committed = True
        logger.debug(f"[CacheStore] Committed: {self.key} ({self.bytes_written} bytes)")
        return final_path

    def discard(self) -> None:
        if not self.file.closed:
            self.file.close()
        if not self.owns_path():
            # Removed as abandoned, possibly re-created by another fill
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[CacheStore] Failed to remove partial {self.path}: {e}")

    def __enter__(self) -> "PartialEntry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            self.discard()


class CacheStore:
    """Directory of source files keyed by escaped source URL."""

    def __init__(self, cache_dir: str):
        self.cache_dir = Path(cache_dir)
        self.partial_dir = self.cache_dir / PARTIAL_DIR_NAME
        self._init_cache_dir()

    def _init_cache_dir(self) -> None:
        """Create cache directories if they don't exist."""
        self.partial_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[CacheStore] Cache directory: {self.cache_dir}")

    def path_for(self, key: str) -> Path:
        return self.cache_dir / key

    def partial_path(self, key: str) -> Path:
        return self.partial_dir / key

    def lookup(self, key: str) -> Optional[Path]:
        """Return the committed entry's path, or None on a miss."""
        path = self.path_for(key)
        if path.is_file():
            return path
        return None

    def create(self, key: str) -> PartialEntry:
        """
        Open an exclusive write handle for `key`.

        Raises:
            EntryExistsError: the entry is already committed or another
                fill holds the partial file.
            CacheStoreError: the cache directory is unusable.
        """
        if self.lookup(key) is not None:
            raise EntryExistsError(f"Cache entry exists: {key}")

        try:
            fd = os.open(
                self.partial_path(key),
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                0o666,
            )
        except FileExistsError as e:
            raise EntryExistsError(f"Cache entry is being filled: {key}") from e
        except OSError as e:
            raise CacheStoreError(f"Cache open failed: {e}") from e

        entry = PartialEntry(self, key, fd)

        # The previous writer may have committed between lookup and open
        if self.lookup(key) is not None:
            entry.discard()
            raise EntryExistsError(f"Cache entry exists: {key}")
        return entry

    def partial_age(self, key: str) -> Optional[float]:
        """Seconds since the partial file was last written, None if absent."""
        try:
            mtime = self.partial_path(key).stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, time.time() - mtime)

    def remove_stale_partial(self, key: str, max_age: float) -> bool:
        """Remove the partial file of a fill that stopped making progress."""
        age = self.partial_age(key)
        if age is None or age < max_age:
            return False
        try:
            self.partial_path(key).unlink()
        except FileNotFoundError:
            return False
        logger.warning(f"[CacheStore] Removed abandoned partial: {key} (idle {age:.1f}s)")
        return True

    def list_entries(self) -> List[CachedFile]:
        """Scan the committed entries (regular files at the top level)."""
        entries = []
        try:
            with os.scandir(self.cache_dir) as it:
                for item in it:
                    try:
                        if not item.is_file(follow_symlinks=False):
                            continue
                        st = item.stat(follow_symlinks=False)
                    except FileNotFoundError:
                        continue
                    entries.append(CachedFile(item.name, st.st_size, st.st_mtime_ns))
        except OSError as e:
            raise CacheStoreError(f"Cache directory unreadable: {e}") from e
        return entries

    def evict(self, max_bytes: int) -> List[str]:
        """
        Trim the cache to at most `max_bytes`, oldest entries first.

        Entries are ordered newest first by modification time (nanosecond
        resolution, name as tie-breaker). Entries larger than the bound are
        dropped, then the longest prefix of the rest that fits the bound is
        kept and everything after it is deleted. Only when no entry fits at
        all does the newest one survive on its own.

        Returns:
            Keys of the removed entries.
        """
        entries = sorted(self.list_entries(), key=lambda e: (-e.mtime_ns, e.key))

        fitting = [e for e in entries if e.size_bytes <= max_bytes]
        kept = set()
        if fitting:
            kept_bytes = 0
            for entry in fitting:
                if kept_bytes + entry.size_bytes > max_bytes:
                    break
                kept_bytes += entry.size_bytes
                kept.add(entry.key)
        elif entries:
            kept.add(entries[0].key)

        removed = []
        for entry in entries:
            if entry.key in kept:
                continue
            try:
                self.path_for(entry.key).unlink()
            except FileNotFoundError:
                # Removed by someone else sharing the directory
                continue
            except OSError as e:
                logger.warning(f"[CacheStore] Failed to remove {entry.key}: {e}")
                continue
            removed.append(entry.key)
            logger.info(f"[CacheStore] Remove: {self.path_for(entry.key)}")

        return removed

    def stats(self) -> dict:
        """Get cache statistics."""
        entries = self.list_entries()
        total_size = sum(e.size_bytes for e in entries)
        return {
            "total_entries": len(entries),
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
        }


class EvictionScheduler:
    """
    Fire-and-forget eviction trigger.

    At most one eviction runs at a time. Triggers that arrive while it runs
    collapse into a single follow-up pass.
    """

    def __init__(self, store: CacheStore, max_bytes: int):
        self.store = store
        self.max_bytes = max_bytes
        self._task: Optional[asyncio.Task] = None
        self._pending = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self._pending = True
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._pending:
            self._pending = False
            try:
                removed = await asyncio.to_thread(self.store.evict, self.max_bytes)
                if removed:
                    logger.info(f"[CacheStore] Evicted {len(removed)} entries")
            except Exception:
                logger.exception("[CacheStore] Eviction failed")

    async def wait_idle(self) -> None:
        """Wait for the current eviction pass, if any, to finish."""
        while self.running:
            await asyncio.shield(self._task)
