"""URL to on-disk storage path mapping.

The mapping only looks at the host and the pathname of a URL. Query strings and
fragments are dropped, so ``/a?x=1`` and ``/a?x=2`` share one cache file.
"""

import posixpath
from pathlib import Path
from urllib.parse import urlsplit

from .exceptions import InvalidURLError

DEFAULT_INDEX_NAME = "index.html"

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def _host_segment(url: str) -> str:
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(f"Cannot parse URL {url!r}: {e}") from e

    hostname = parts.hostname
    if not hostname:
        raise InvalidURLError(f"URL has no host: {url!r}")

    if ":" in hostname:
        # IPv6 literal, bracketed as in the URL host
        hostname = f"[{hostname}]"

    if port is None or _DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return hostname
    return f"{hostname}:{port}"


def resolve_path(url: str, cache_root: str | Path, index_name: str = DEFAULT_INDEX_NAME) -> Path:
    """Map a request URL to the file that caches its response.

    Args:
        url: Absolute request URL
        cache_root: Base directory of the cache
        index_name: File name used when the pathname denotes a directory

    Returns:
        ``cache_root / host / pathname``, with ``index_name`` appended when the
        pathname is empty or ends in ``/``.

    Raises:
        InvalidURLError: If the URL cannot be parsed or has no host.
    """
    host = _host_segment(url)

    # Percent-encoding is kept as-is so "%2F" never turns into a separator.
    pathname = urlsplit(url).path or "/"
    # A trailing "." or ".." resolves to a directory, as "/a/b/.." is "/a/"
    is_directory = pathname.endswith("/") or pathname.rsplit("/", 1)[-1] in (".", "..")

    # Dot segments are resolved against the root, never above it.
    normalized = posixpath.normpath("/" + pathname.lstrip("/"))
    segments = [seg for seg in normalized.split("/") if seg]
    if is_directory or not segments:
        segments.append(index_name)

    return Path(cache_root, host, *segments)
