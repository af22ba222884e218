"""
Transform Catalog

Maps a transform name to its command argument templates, loaded from a
YAML file such as:

    fill:
      - "-resize {{width}}x{{height}}^"
      - "-gravity center -extent {{width}}x{{height}}"
    thumb: ["-thumbnail {{width}}x{{height}}"]

Requests read an immutable snapshot. A reload builds a complete new
snapshot and publishes it with one attribute assignment, so readers see
either the old catalog or the new one, never a mix.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

import yaml

from .errors import CatalogError

logger = logging.getLogger(__name__)

# Reserved name: serve the cached source without running the tool
IDENTITY_TRANSFORM = "none"


class TransformCatalog:
    """Read-only snapshot of transform name -> argument templates."""

    def __init__(self, entries: Optional[Mapping[str, Iterable[str]]] = None, source: str = ""):
        self._entries: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {name: tuple(templates) for name, templates in (entries or {}).items()}
        )
        self.source = source

    def get(self, name: str) -> Optional[Tuple[str, ...]]:
        return self._entries.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list:
        return sorted(self._entries)

    @classmethod
    def from_mapping(cls, data, source: str = "") -> "TransformCatalog":
        """Validate a parsed YAML document and build a snapshot from it."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise CatalogError(f"Catalog {source or '<memory>'} must be a mapping of name to templates")

        entries: Dict[str, Tuple[str, ...]] = {}
        for name, templates in data.items():
            if not isinstance(name, str) or not name:
                raise CatalogError(f"Invalid transform name: {name!r}")
            if name == IDENTITY_TRANSFORM:
                logger.warning(f"[Catalog] Ignoring entry {name!r}: reserved for the identity transform")
                continue
            if isinstance(templates, str):
                templates = [templates]
            if not isinstance(templates, list) or not all(isinstance(t, str) for t in templates):
                raise CatalogError(f"Transform {name!r} must be a list of strings")
            entries[name] = tuple(templates)

        return cls(entries, source=source)

    @classmethod
    def load(cls, path: str) -> "TransformCatalog":
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise CatalogError(f"Failed to read catalog {path}: {e}") from e
        except yaml.YAMLError as e:
            raise CatalogError(f"Failed to parse catalog {path}: {e}") from e
        return cls.from_mapping(data, source=str(path))


class CatalogHolder:
    """Owns the current catalog snapshot and swaps it on reload."""

    def __init__(self, path: Optional[str] = None, catalog: Optional[TransformCatalog] = None):
        self.path = path
        self._current = catalog if catalog is not None else TransformCatalog()

    @property
    def current(self) -> TransformCatalog:
        return self._current

    def publish(self, catalog: TransformCatalog) -> None:
        self._current = catalog

    def reload(self, strict: bool = True) -> bool:
        """
        Load the catalog file and publish it.

        With strict=False a broken file is logged and the previous snapshot
        stays active; this is what the reload signal uses.
        """
        if not self.path:
            raise CatalogError("No catalog path configured")
        try:
            catalog = TransformCatalog.load(self.path)
        except CatalogError as e:
            if strict:
                raise
            logger.error(f"[Catalog] Reload failed, keeping {len(self._current)} transforms: {e}")
            return False

        self.publish(catalog)
        logger.info(f"[Catalog] Loaded {len(catalog)} transforms from {Path(self.path)}")
        return True
