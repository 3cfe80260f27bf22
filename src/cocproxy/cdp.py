"""Binds the interception controller to a browser-use session over CDP.

Requests are paused with the Fetch domain (request stage) and resolved with
Fetch.fulfillRequest / Fetch.continueRequest / Fetch.failRequest. Responses are
observed through Network.responseReceived and their bodies pulled with
Network.getResponseBody once Network.loadingFinished has fired.

The id shared by both sides is the CDP network id: Fetch.requestPaused carries
it as ``networkId`` and Network events carry it as ``requestId``.

CDP callbacks are synchronous; every controller call runs as a tracked task.
"""

import asyncio
import base64
import logging
from collections.abc import Coroutine, Mapping
from typing import TYPE_CHECKING, Any

from .controller import CacheMode, CacheStats, InterceptionController
from .exceptions import BrowserError
from .observability import get_page_logger

if TYPE_CHECKING:
    from browser_use.browser.session import BrowserSession
    from cdp_use.cdp.fetch.events import RequestPausedEvent
    from cdp_use.cdp.network.events import LoadingFailedEvent, LoadingFinishedEvent, ResponseReceivedEvent

logger = logging.getLogger(__name__)

# Intercept everything at the request stage; responses are observed via Network events.
FETCH_PATTERNS = [{"urlPattern": "*", "requestStage": "Request"}]

# Network.ErrorReason used for rejected cache misses
ABORT_ERROR_REASON = "Failed"

INTERCEPTED_SCHEMES = ("http://", "https://")


class CDPPausedRequest:
    """A request paused by Fetch.requestPaused."""

    def __init__(self, cdp_client: Any, event: "RequestPausedEvent", session_id: str | None):
        self._cdp_client = cdp_client
        self._session_id = session_id
        self._fetch_id: str = event["requestId"]
        self._network_id: str = event.get("networkId") or self._fetch_id
        request_data = event.get("request", {})
        self._url: str = request_data.get("url", "")
        self._method: str = request_data.get("method", "GET")

    @property
    def id(self) -> str:
        return self._network_id

    @property
    def url(self) -> str:
        return self._url

    @property
    def method(self) -> str:
        return self._method

    async def fulfill(self, status: int, body: bytes) -> None:
        await self._cdp_client.send.Fetch.fulfillRequest(
            params={
                "requestId": self._fetch_id,
                "responseCode": status,
                "body": base64.b64encode(body).decode("ascii"),
            },
            session_id=self._session_id,
        )

    async def continue_(self) -> None:
        await self._cdp_client.send.Fetch.continueRequest(
            params={"requestId": self._fetch_id},
            session_id=self._session_id,
        )

    async def abort(self) -> None:
        await self._cdp_client.send.Fetch.failRequest(
            params={"requestId": self._fetch_id, "errorReason": ABORT_ERROR_REASON},
            session_id=self._session_id,
        )


class CDPResponse:
    """A response seen through Network.responseReceived."""

    def __init__(
        self,
        cdp_client: Any,
        event: "ResponseReceivedEvent",
        session_id: str | None,
        loading_done: "asyncio.Future[None] | None",
    ):
        self._cdp_client = cdp_client
        self._session_id = session_id
        self._loading_done = loading_done
        self._request_id: str = event["requestId"]
        response_data = event.get("response", {})
        self._url: str = response_data.get("url", "")
        self._status: int = int(response_data.get("status", 0))
        self._headers: dict[str, str] = dict(response_data.get("headers", {}))

    @property
    def request_id(self) -> str:
        return self._request_id

    @property
    def url(self) -> str:
        return self._url

    @property
    def status(self) -> int:
        return self._status

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    async def body(self) -> bytes:
        """Fetch the full body once the browser has finished loading it."""
        if self._loading_done is not None:
            await self._loading_done
        result = await self._cdp_client.send.Network.getResponseBody(
            params={"requestId": self._request_id},
            session_id=self._session_id,
        )
        body = result.get("body", "")
        if result.get("base64Encoded", False):
            return base64.b64decode(body)
        return body.encode("utf-8")


class CacheInterceptor:
    """Attaches an InterceptionController to one browser-use page session.

    Usage:
        interceptor = CacheInterceptor(files_dir="./files", mode="offline")
        await interceptor.attach(browser_session)

        # ... navigate ...

        await interceptor.finalize()  # wait for pending cache writes
        await interceptor.detach()
    """

    def __init__(
        self,
        files_dir: str = "./files",
        mode: CacheMode | str = CacheMode.PROXY,
        index_name: str = "index.html",
        controller: InterceptionController | None = None,
    ):
        """Initialize interceptor.

        Args:
            files_dir: Cache root directory
            mode: "proxy" or "offline"
            index_name: File name stored for directory-like URLs
            controller: Pre-built controller (overrides the other arguments)
        """
        self.controller = controller or InterceptionController(files_dir=files_dir, mode=mode, index_name=index_name)

        self._pending_tasks: set[asyncio.Task] = set()
        self._loading: dict[str, asyncio.Future[None]] = {}

        self._session_id: str | None = None
        self._cdp_client: Any = None
        self._attached = False
        self._page_log = get_page_logger(None, self.controller.mode.value)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def stats(self) -> CacheStats:
        return self.controller.stats

    @property
    def pending_count(self) -> int:
        return len(self._pending_tasks)

    @property
    def loading_count(self) -> int:
        """Responses waiting on loadingFinished before their body is fetched."""
        return len(self._loading)

    async def attach(self, browser_session: "BrowserSession") -> None:
        """Enable request interception on the session's current page.

        Raises:
            BrowserError: If the Fetch domain cannot be enabled.
        """
        if self._attached:
            logger.warning("Cache interceptor already attached")
            return

        cdp_session = await browser_session.get_or_create_cdp_session(target_id=None, focus=False)
        self._session_id = cdp_session.session_id
        self._cdp_client = cdp_client = browser_session.cdp_client
        cdp_client.register.Fetch.requestPaused(self._on_request_paused)
        cdp_client.register.Network.responseReceived(self._on_response_received)
        cdp_client.register.Network.loadingFinished(self._on_loading_finished)
        cdp_client.register.Network.loadingFailed(self._on_loading_failed)

        # Requests may be paused before Fetch.enable returns
        self._attached = True
        try:
            await cdp_client.send.Network.enable(session_id=self._session_id)
            await cdp_client.send.Fetch.enable(params={"patterns": FETCH_PATTERNS}, session_id=self._session_id)
        except Exception as e:
            self._attached = False
            raise BrowserError(f"Failed to enable request interception: {e}") from e

        self._page_log = get_page_logger(self._session_id, self.controller.mode.value)
        self._page_log.info("cache_attached", files_dir=str(self.controller.files_dir))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Cache handler failed: {error}", exc_info=error)

    def _is_own_session(self, session_id: str | None) -> bool:
        return session_id is None or self._session_id is None or session_id == self._session_id

    def _on_request_paused(self, event: "RequestPausedEvent", session_id: str | None) -> None:
        """Handle CDP Fetch.requestPaused event."""
        if not self._attached or not self._is_own_session(session_id):
            return
        request = CDPPausedRequest(self._cdp_client, event, session_id)

        if not request.url.startswith(INTERCEPTED_SCHEMES):
            self._spawn(request.continue_())
            return

        self._spawn(self.controller.handle_request(request))

    def _on_response_received(self, event: "ResponseReceivedEvent", session_id: str | None) -> None:
        """Handle CDP Network.responseReceived event."""
        if not self._attached or not self._is_own_session(session_id):
            return
        url = event.get("response", {}).get("url", "")
        if not url.startswith(INTERCEPTED_SCHEMES):
            return

        request_id = event["requestId"]
        response_data = event.get("response", {})
        loading_done = None
        # Only responses whose body will be fetched wait on loadingFinished
        if self.controller.expects_body(request_id, int(response_data.get("status", 0)), response_data.get("headers", {})):
            loading_done = self._loading.setdefault(request_id, asyncio.get_running_loop().create_future())
        response = CDPResponse(self._cdp_client, event, session_id, loading_done)
        self._spawn(self.controller.handle_response(response))

    def _on_loading_finished(self, event: "LoadingFinishedEvent", session_id: str | None) -> None:
        """Handle CDP Network.loadingFinished event."""
        future = self._loading.pop(event.get("requestId", ""), None)
        if future is not None and not future.done():
            future.set_result(None)

    def _on_loading_failed(self, event: "LoadingFailedEvent", session_id: str | None) -> None:
        """Handle CDP Network.loadingFailed event."""
        future = self._loading.pop(event.get("requestId", ""), None)
        if future is not None and not future.done():
            future.set_exception(BrowserError(f"Loading failed: {event.get('errorText', 'Unknown error')}"))
            # Consumed here in case no body capture awaits it
            future.exception()

    async def finalize(self, timeout: float = 30.0) -> None:
        """Wait for all pending request/response handlers to complete.

        Args:
            timeout: Maximum time to wait for pending tasks (default: 30s)
        """
        if not self._pending_tasks:
            return

        logger.debug(f"Finalizing: waiting for {len(self._pending_tasks)} pending cache handlers...")

        try:
            await asyncio.wait_for(
                asyncio.gather(*list(self._pending_tasks), return_exceptions=True),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning(f"Finalize timed out after {timeout}s with {len(self._pending_tasks)} tasks remaining")
            for task in self._pending_tasks:
                if not task.done():
                    task.cancel()

        self._pending_tasks.clear()
        logger.debug("Finalize complete")

    async def detach(self) -> None:
        """Stop intercepting. Paused requests are released by Fetch.disable."""
        if not self._attached:
            return

        self._attached = False
        for future in self._loading.values():
            future.cancel()
        self._loading.clear()

        try:
            await self._cdp_client.send.Fetch.disable(session_id=self._session_id)
        except Exception as e:
            # The page may already be gone
            logger.debug(f"Fetch.disable: {e}")

        self._page_log.info("cache_detached", **self.controller.stats.model_dump())
