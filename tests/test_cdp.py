"""Tests for the CDP binding between browser-use and the interception controller."""

import asyncio
import base64
from collections.abc import Callable, Mapping

import pytest
from structlog.testing import capture_logs

from cocproxy.cdp import ABORT_ERROR_REASON, FETCH_PATTERNS, CacheInterceptor
from cocproxy.exceptions import BrowserError

SESSION_ID = "session-1"

_Callback = Callable[[Mapping[str, object], str | None], None]


class _DummyFetchRegister:
    def __init__(self) -> None:
        self.request_paused: _Callback | None = None

    def requestPaused(self, cb: _Callback) -> None:
        self.request_paused = cb


class _DummyNetworkRegister:
    def __init__(self) -> None:
        self.response_received: _Callback | None = None
        self.loading_finished: _Callback | None = None
        self.loading_failed: _Callback | None = None

    def responseReceived(self, cb: _Callback) -> None:
        self.response_received = cb

    def loadingFinished(self, cb: _Callback) -> None:
        self.loading_finished = cb

    def loadingFailed(self, cb: _Callback) -> None:
        self.loading_failed = cb


class _DummyRegister:
    def __init__(self) -> None:
        self.Fetch = _DummyFetchRegister()
        self.Network = _DummyNetworkRegister()


class _DummyFetchSender:
    def __init__(self, calls: list[tuple], fail_enable: bool = False) -> None:
        self._calls = calls
        self._fail_enable = fail_enable

    async def enable(self, *, params: dict, session_id: str | None = None) -> dict:
        if self._fail_enable:
            raise RuntimeError("Fetch domain unavailable")
        self._calls.append(("Fetch.enable", params, session_id))
        return {}

    async def disable(self, *, session_id: str | None = None) -> dict:
        self._calls.append(("Fetch.disable", None, session_id))
        return {}

    async def fulfillRequest(self, *, params: dict, session_id: str | None = None) -> dict:
        self._calls.append(("Fetch.fulfillRequest", params, session_id))
        return {}

    async def continueRequest(self, *, params: dict, session_id: str | None = None) -> dict:
        self._calls.append(("Fetch.continueRequest", params, session_id))
        return {}

    async def failRequest(self, *, params: dict, session_id: str | None = None) -> dict:
        self._calls.append(("Fetch.failRequest", params, session_id))
        return {}


class _DummyNetworkSender:
    def __init__(self, calls: list[tuple], bodies: dict[str, dict]) -> None:
        self._calls = calls
        self._bodies = bodies

    async def enable(self, *, session_id: str | None = None) -> dict:
        self._calls.append(("Network.enable", None, session_id))
        return {}

    async def getResponseBody(self, *, params: dict, session_id: str | None = None) -> dict:
        self._calls.append(("Network.getResponseBody", params, session_id))
        result = self._bodies.get(params["requestId"])
        if result is None:
            raise RuntimeError("No resource with given identifier found")
        return result


class _DummySender:
    def __init__(self, calls: list[tuple], bodies: dict[str, dict], fail_enable: bool) -> None:
        self.Fetch = _DummyFetchSender(calls, fail_enable)
        self.Network = _DummyNetworkSender(calls, bodies)


class _DummyCDPClient:
    def __init__(self, bodies: dict[str, dict] | None = None, fail_enable: bool = False) -> None:
        self.calls: list[tuple] = []
        self.register = _DummyRegister()
        self.send = _DummySender(self.calls, bodies or {}, fail_enable)

    def sent(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]


class _DummyCDPSession:
    session_id = SESSION_ID


class _DummyBrowserSession:
    def __init__(self, bodies: dict[str, dict] | None = None, fail_enable: bool = False) -> None:
        self.cdp_client = _DummyCDPClient(bodies, fail_enable)

    async def get_or_create_cdp_session(self, target_id=None, focus: bool = True) -> _DummyCDPSession:
        _ = target_id
        _ = focus
        return _DummyCDPSession()


def _paused(fetch_id: str, network_id: str, url: str) -> dict:
    return {
        "requestId": fetch_id,
        "networkId": network_id,
        "resourceType": "Document",
        "request": {"url": url, "method": "GET", "headers": {}},
    }


def _received(network_id: str, url: str, status: int = 200, headers: dict | None = None) -> dict:
    return {
        "requestId": network_id,
        "type": "Document",
        "response": {"url": url, "status": status, "headers": headers or {}, "mimeType": "text/html"},
    }


async def _attached(files_dir, mode: str = "proxy", bodies: dict[str, dict] | None = None):
    browser_session = _DummyBrowserSession(bodies)
    interceptor = CacheInterceptor(files_dir=str(files_dir), mode=mode)
    await interceptor.attach(browser_session)
    return interceptor, browser_session.cdp_client


class TestAttach:
    async def test_enables_network_and_fetch_on_page_session(self, files_dir):
        _, cdp_client = await _attached(files_dir)

        assert cdp_client.sent("Network.enable") == [("Network.enable", None, SESSION_ID)]
        assert cdp_client.sent("Fetch.enable") == [("Fetch.enable", {"patterns": FETCH_PATTERNS}, SESSION_ID)]
        assert cdp_client.register.Fetch.request_paused is not None
        assert cdp_client.register.Network.response_received is not None

    async def test_enable_failure_raises_browser_error(self, files_dir):
        interceptor = CacheInterceptor(files_dir=str(files_dir))

        with pytest.raises(BrowserError):
            await interceptor.attach(_DummyBrowserSession(fail_enable=True))

    async def test_detach_disables_fetch(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)

        await interceptor.detach()
        await interceptor.detach()

        assert cdp_client.sent("Fetch.disable") == [("Fetch.disable", None, SESSION_ID)]

    async def test_events_ignored_after_detach(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)
        await interceptor.detach()

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/"), SESSION_ID)
        await interceptor.finalize()

        assert cdp_client.sent("Fetch.continueRequest") == []


class TestRequestStage:
    async def test_hit_fulfilled_with_base64_body(self, files_dir):
        cached = files_dir / "example.com" / "a"
        cached.parent.mkdir(parents=True)
        cached.write_bytes(b"hello")
        interceptor, cdp_client = await _attached(files_dir)

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/a?x=2"), SESSION_ID)
        await interceptor.finalize()

        [(_, params, session_id)] = cdp_client.sent("Fetch.fulfillRequest")
        assert params == {"requestId": "f1", "responseCode": 200, "body": base64.b64encode(b"hello").decode("ascii")}
        assert session_id == SESSION_ID
        assert interceptor.controller.in_flight_count == 1

    async def test_miss_continued_in_proxy_mode(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir, mode="proxy")

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/a"), SESSION_ID)
        await interceptor.finalize()

        assert cdp_client.sent("Fetch.continueRequest") == [("Fetch.continueRequest", {"requestId": "f1"}, SESSION_ID)]

    async def test_miss_failed_in_offline_mode(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir, mode="offline")

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/"), SESSION_ID)
        await interceptor.finalize()

        assert cdp_client.sent("Fetch.failRequest") == [
            ("Fetch.failRequest", {"requestId": "f1", "errorReason": ABORT_ERROR_REASON}, SESSION_ID)
        ]
        assert cdp_client.sent("Fetch.continueRequest") == []
        assert interceptor.stats.aborted == 1

    async def test_non_http_requests_pass_through(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir, mode="offline")

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "chrome-extension://abc/script.js"), SESSION_ID)
        await interceptor.finalize()

        assert cdp_client.sent("Fetch.continueRequest") == [("Fetch.continueRequest", {"requestId": "f1"}, SESSION_ID)]
        assert interceptor.stats.misses == 0

    async def test_other_sessions_ignored(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)

        cdp_client.register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/"), "other-session")
        await interceptor.finalize()

        assert cdp_client.sent("Fetch.continueRequest") == []


class TestResponseStage:
    async def test_body_captured_after_loading_finished(self, files_dir):
        bodies = {"n1": {"body": "hello", "base64Encoded": False}}
        interceptor, cdp_client = await _attached(files_dir, bodies=bodies)
        register = cdp_client.register

        register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/a?x=1"), SESSION_ID)
        register.Network.response_received(_received("n1", "https://example.com/a?x=1"), SESSION_ID)
        await asyncio.sleep(0)
        assert cdp_client.sent("Network.getResponseBody") == []

        register.Network.loading_finished({"requestId": "n1", "encodedDataLength": 5}, SESSION_ID)
        await interceptor.finalize()

        assert (files_dir / "example.com" / "a").read_bytes() == b"hello"
        assert cdp_client.sent("Network.getResponseBody") == [("Network.getResponseBody", {"requestId": "n1"}, SESSION_ID)]

    async def test_base64_body_decoded(self, files_dir):
        png = b"\x89PNG\r\n\x1a\n\x00\x01"
        bodies = {"n1": {"body": base64.b64encode(png).decode("ascii"), "base64Encoded": True}}
        interceptor, cdp_client = await _attached(files_dir, bodies=bodies)
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/logo.png"), SESSION_ID)
        register.Network.loading_finished({"requestId": "n1"}, SESSION_ID)
        await interceptor.finalize()

        assert (files_dir / "example.com" / "logo.png").read_bytes() == png

    async def test_fulfilled_response_not_rewritten(self, files_dir):
        cached = files_dir / "example.com" / "index.html"
        cached.parent.mkdir(parents=True)
        cached.write_bytes(b"<p>cached</p>")
        bodies = {"n1": {"body": "<p>synthetic</p>", "base64Encoded": False}}
        interceptor, cdp_client = await _attached(files_dir, bodies=bodies)
        register = cdp_client.register

        register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/"), SESSION_ID)
        register.Network.response_received(_received("n1", "https://example.com/"), SESSION_ID)
        register.Network.loading_finished({"requestId": "n1"}, SESSION_ID)
        await interceptor.finalize()

        assert cached.read_bytes() == b"<p>cached</p>"
        assert cdp_client.sent("Network.getResponseBody") == []
        assert interceptor.controller.in_flight_count == 0

    async def test_empty_response_skips_body_call(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/ping", status=204, headers={"content-length": "0"}), SESSION_ID)
        await interceptor.finalize()

        assert (files_dir / "example.com" / "ping").read_bytes() == b""
        assert cdp_client.sent("Network.getResponseBody") == []

    async def test_loading_failed_counts_error(self, files_dir, caplog):
        interceptor, cdp_client = await _attached(files_dir)
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/big.bin"), SESSION_ID)
        register.Network.loading_failed({"requestId": "n1", "errorText": "net::ERR_ABORTED"}, SESSION_ID)
        await interceptor.finalize()

        assert not (files_dir / "example.com" / "big.bin").exists()
        assert interceptor.stats.errors == 1
        assert "Cache handler failed" in caplog.text

    async def test_body_retrieval_failure_counts_error(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir, bodies={})
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/gone"), SESSION_ID)
        register.Network.loading_finished({"requestId": "n1"}, SESSION_ID)
        await interceptor.finalize()

        assert interceptor.stats.errors == 1
        assert interceptor.pending_count == 0


class TestLoadingTracking:
    async def test_only_captured_responses_wait_for_loading(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/events"), SESSION_ID)
        assert interceptor.loading_count == 1

        await interceptor.detach()
        await interceptor.finalize()
        assert interceptor.loading_count == 0

    async def test_skipped_and_empty_responses_not_tracked(self, files_dir):
        interceptor, cdp_client = await _attached(files_dir)
        register = cdp_client.register

        register.Network.response_received(_received("n1", "https://example.com/missing", status=404), SESSION_ID)
        register.Network.response_received(_received("n2", "https://example.com/ping", headers={"Content-Length": "0"}), SESSION_ID)
        assert interceptor.loading_count == 0

        await interceptor.finalize()
        assert interceptor.stats.skipped == 1
        assert interceptor.stats.stored == 1

    async def test_cache_hit_response_not_tracked(self, files_dir):
        cached = files_dir / "example.com" / "stream"
        cached.parent.mkdir(parents=True)
        cached.write_bytes(b"data: cached\n\n")
        interceptor, cdp_client = await _attached(files_dir)
        register = cdp_client.register

        register.Fetch.request_paused(_paused("f1", "n1", "https://example.com/stream"), SESSION_ID)
        await asyncio.sleep(0)
        register.Network.response_received(_received("n1", "https://example.com/stream"), SESSION_ID)

        assert interceptor.loading_count == 0
        await interceptor.finalize()
        assert interceptor.controller.in_flight_count == 0
        assert cached.read_bytes() == b"data: cached\n\n"


class TestLifecycleLogging:
    async def test_attach_and_detach_logged_with_page_context(self, files_dir):
        interceptor = CacheInterceptor(files_dir=str(files_dir), mode="offline")

        with capture_logs() as logs:
            await interceptor.attach(_DummyBrowserSession())
            await interceptor.detach()

        attached, detached = [e for e in logs if e["event"] in ("cache_attached", "cache_detached")]
        assert attached["page_id"] == SESSION_ID
        assert attached["cache_mode"] == "offline"
        assert attached["files_dir"] == str(files_dir)
        assert detached["page_id"] == SESSION_ID
        assert detached["hits"] == 0
