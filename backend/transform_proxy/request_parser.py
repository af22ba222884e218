"""
Request Path Parser

Decodes `/<transform>/<width>/<height>/<source-url>[?query]` into a
RequestDescriptor. Parsing never touches the cache or the network, so a
rejected request costs nothing.
"""

import hashlib
import re
from dataclasses import dataclass
from urllib.parse import quote_plus

from .errors import BadRequestError, InvalidDimensionError

MIN_DIMENSION = 1
MAX_DIMENSION = 5000

# Escaped names longer than this get shortened to stay under filesystem limits
MAX_KEY_LENGTH = 200

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class RequestDescriptor:
    """A validated transform request."""
    transform: str
    width: int
    height: int
    source: str        # Source URL without scheme, query string included
    cache_key: str     # Escaped, query-stripped source URL

    @property
    def upstream_url(self) -> str:
        # Sources are always fetched over https
        return "https://" + self.source


def _parse_dimension(field: str, value: str) -> int:
    if not _INTEGER_RE.fullmatch(value):
        raise InvalidDimensionError(
            field, value, unparseable=True,
            message=f"{field.capitalize()} is not an integer: {value!r}",
        )
    number = int(value)
    if number < MIN_DIMENSION or number > MAX_DIMENSION:
        raise InvalidDimensionError(
            field, value, unparseable=False,
            message=f"{field.capitalize()} not specified or invalid",
        )
    return number


def cache_key_for(source: str) -> str:
    """
    Map a source URL to its cache file name.

    The query string is dropped, the rest is query-escaped so `/` becomes
    `%2F`. A leading dot is escaped too, which keeps `.`, `..` and the
    store's hidden directories out of the key space.
    """
    index = source.find("?")
    if index != -1:
        source = source[:index]

    key = quote_plus(source, safe="")
    if key.startswith("."):
        key = "%2E" + key[1:]

    if len(key) > MAX_KEY_LENGTH:
        digest = hashlib.sha256(key.encode()).hexdigest()[:16]
        key = f"{key[:MAX_KEY_LENGTH - 17]}~{digest}"
    return key


def parse_request_path(path: str) -> RequestDescriptor:
    """
    Parse a raw request target into a RequestDescriptor.

    Raises:
        BadRequestError: path does not start with `/`, has fewer than four
            segments, or names an empty source.
        InvalidDimensionError: width or height is unparseable or outside
            [1, 5000].
    """
    if not path.startswith("/"):
        raise BadRequestError("Path should start with /")

    parts = path[1:].split("/", 3)
    if len(parts) < 4:
        raise BadRequestError("Path should be /<transform>/<width>/<height>/<source>")

    transform, width, height, source = parts
    width_num = _parse_dimension("width", width)
    height_num = _parse_dimension("height", height)

    if not source or source.startswith("?"):
        raise BadRequestError("Source URL not specified")

    return RequestDescriptor(
        transform=transform,
        width=width_num,
        height=height_num,
        source=source,
        cache_key=cache_key_for(source),
    )
