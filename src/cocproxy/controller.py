"""Request/response interception policy for the on-disk browser cache.

The controller decides, for every request a page issues, whether to serve it
from disk, let it through to the network, or reject it. For responses that came
from the network it writes the body to disk so later requests can be served
locally.

Requests fulfilled from disk still produce a response event in the browser.
Those ids are remembered in an in-flight marker set so the synthetic reply is
not written back over the cache file it came from. Each marker is consumed by
exactly one response event.

Usage:
    controller = InterceptionController(files_dir="./files", mode=CacheMode.OFFLINE)
    await controller.handle_request(request)    # from the request event
    await controller.handle_response(response)  # from the response event
"""

import logging
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from .exceptions import BodyCaptureError
from .paths import DEFAULT_INDEX_NAME, resolve_path

logger = logging.getLogger(__name__)


class CacheMode(str, Enum):
    """What to do with requests that have no cached response."""

    PROXY = "proxy"  # fall through to the network
    OFFLINE = "offline"  # reject, no network egress


class InterceptedRequest(Protocol):
    """A paused request awaiting exactly one terminal action."""

    @property
    def id(self) -> str: ...

    @property
    def url(self) -> str: ...

    @property
    def method(self) -> str: ...

    async def fulfill(self, status: int, body: bytes) -> None: ...

    async def continue_(self) -> None: ...

    async def abort(self) -> None: ...


class ObservedResponse(Protocol):
    """A final response for a request that was not aborted."""

    @property
    def request_id(self) -> str: ...

    @property
    def url(self) -> str: ...

    @property
    def status(self) -> int: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    async def body(self) -> bytes: ...


class CacheStats(BaseModel):
    """Counters for one controller's lifetime."""

    hits: int = 0
    misses: int = 0
    aborted: int = 0
    stored: int = 0
    skipped: int = 0
    errors: int = 0


def _get_header_value(headers: Mapping[str, str], name: str) -> str | None:
    target = name.lower()
    for k, v in headers.items():
        if k.strip().lower() == target:
            return v
    return None


def _is_empty_body(headers: Mapping[str, str]) -> bool:
    return _get_header_value(headers, "content-length") == "0"


def is_capturable_status(status: int) -> bool:
    """Only successful responses are written to disk."""
    return 200 <= status < 300


class InterceptionController:
    """Serves requests from disk and captures network responses to disk.

    One instance per page session. Mode and cache root are fixed at
    construction.
    """

    def __init__(
        self,
        files_dir: str | Path = "./files",
        mode: CacheMode | str = CacheMode.PROXY,
        index_name: str = DEFAULT_INDEX_NAME,
    ):
        """Initialize controller.

        Args:
            files_dir: Cache root directory (created lazily on first write)
            mode: "proxy" or "offline"
            index_name: File name stored for directory-like URLs
        """
        self._files_dir = Path(files_dir)
        self._mode = CacheMode(mode)
        self._index_name = index_name
        self._served_from_cache: set[str] = set()
        self._stats = CacheStats()

    @property
    def mode(self) -> CacheMode:
        return self._mode

    @property
    def files_dir(self) -> Path:
        return self._files_dir

    @property
    def stats(self) -> CacheStats:
        """Snapshot of the counters."""
        return self._stats.model_copy()

    @property
    def in_flight_count(self) -> int:
        """Requests fulfilled from disk whose response event has not arrived yet."""
        return len(self._served_from_cache)

    def expects_body(self, request_id: str, status: int, headers: Mapping[str, str]) -> bool:
        """Whether handle_response will ask the browser for this response's body."""
        return (
            request_id not in self._served_from_cache
            and is_capturable_status(status)
            and not _is_empty_body(headers)
        )

    def local_path(self, url: str) -> Path:
        """Storage path for a URL under this controller's cache root."""
        return resolve_path(url, self._files_dir, self._index_name)

    async def handle_request(self, request: InterceptedRequest) -> None:
        """Resolve a paused request with exactly one of fulfill, continue or abort."""
        url = request.url
        local_path = self.local_path(url)
        file_exists = local_path.is_file()

        logger.debug(f"onRequest id={request.id} {request.method} {url} -> {local_path} (exists={file_exists})")

        if file_exists:
            body = local_path.read_bytes()
            # Marked before fulfilling: the response event may be dispatched
            # before the fulfill command returns.
            self._served_from_cache.add(request.id)
            try:
                await request.fulfill(200, body)
            except Exception:
                # No response event will follow a failed fulfill
                self._served_from_cache.discard(request.id)
                raise
            self._stats.hits += 1
            return

        self._stats.misses += 1
        if self._mode is CacheMode.OFFLINE:
            logger.debug(f"request.abort {url}")
            self._stats.aborted += 1
            await request.abort()
        else:
            logger.debug(f"request.continue {url}")
            await request.continue_()

    async def handle_response(self, response: ObservedResponse) -> Path | None:
        """Persist a network response body if it should be cached.

        Returns:
            The path written, or None when nothing was stored.

        Raises:
            BodyCaptureError: If the browser could not hand over the body.
        """
        request_id = response.request_id
        url = response.url
        already_cached = request_id in self._served_from_cache

        logger.debug(f"onResponse id={request_id} {response.status} {url} (already_cached={already_cached})")

        if already_cached:
            self._served_from_cache.discard(request_id)
            return None

        if not is_capturable_status(response.status):
            self._stats.skipped += 1
            return None

        local_path = self.local_path(url)
        if _is_empty_body(response.headers):
            # Bodiless responses have no body to fetch from the browser
            logger.debug(f"Content is empty: {url}")
            body = b""
        else:
            try:
                body = await response.body()
            except Exception as e:
                self._stats.errors += 1
                logger.error(f"Failed to capture body for {url}: {e}")
                raise BodyCaptureError(url, e) from e

        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(body)
        self._stats.stored += 1
        logger.debug(f"Stored {len(body)} bytes at {local_path}")
        return local_path
