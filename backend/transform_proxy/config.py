"""
Transform Proxy Configuration

Defaults follow the original command line flags (cache dir, cache size,
bind address, catalog path). Environment variables override the defaults,
and main.py lets command line flags override both.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


@dataclass
class ProxyConfig:
    """Runtime settings for the transform proxy."""
    # Cache settings
    cache_dir: str = "cache"
    cache_max_bytes: int = 1 * 1024 * 1024 * 1024  # 1 GiB

    # Transform settings
    catalog_path: str = "./opts.yml"
    transform_command: Tuple[str, ...] = ("convert",)
    scratch_dir: Optional[str] = None    # None = system temp dir
    scratch_suffix: str = ".jpg"         # Output format the tool writes
    transform_timeout: float = 60.0

    # Upstream settings
    upstream_timeout: float = 30.0
    fill_timeout: float = 30.0           # How long a loser waits for the winner's fill
    fill_poll_interval: float = 0.05
    partial_stale_after: float = 120.0   # Idle partial files older than this are abandoned

    # Response settings
    content_type: str = "image/jpeg"
    chunk_size: int = 64 * 1024

    # Server settings
    bind: str = "8888"

    thread_env: dict = field(default_factory=lambda: {
        "OMP_NUM_THREADS": "1",
        "MAGICK_THREAD_LIMIT": "1",
    })

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        defaults = cls()

        max_bytes = _int("IMAGE_CACHE_MAX_BYTES", defaults.cache_max_bytes)
        max_mb = _int("IMAGE_CACHE_MAX_SIZE_MB", 0)
        if max_mb > 0:
            max_bytes = max_mb * 1024 * 1024

        command = os.getenv("TRANSFORM_COMMAND")
        return cls(
            cache_dir=os.getenv("IMAGE_CACHE_DIR", defaults.cache_dir),
            cache_max_bytes=max_bytes,
            catalog_path=os.getenv("TRANSFORM_CATALOG_PATH", defaults.catalog_path),
            transform_command=tuple(shlex.split(command)) if command else defaults.transform_command,
            scratch_dir=os.getenv("TRANSFORM_SCRATCH_DIR") or None,
            transform_timeout=_float("TRANSFORM_TIMEOUT_S", defaults.transform_timeout),
            upstream_timeout=_float("UPSTREAM_TIMEOUT_S", defaults.upstream_timeout),
            fill_timeout=_float("CACHE_FILL_TIMEOUT_S", defaults.fill_timeout),
            bind=os.getenv("PROXY_BIND", defaults.bind),
        )
