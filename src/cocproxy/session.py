"""Run a browser-use session with the on-disk cache attached."""

import asyncio
import logging

from pydantic import BaseModel

from .cdp import CacheInterceptor
from .config import settings
from .controller import CacheMode, CacheStats
from .exceptions import BrowserError

logger = logging.getLogger(__name__)


class BrowseResult(BaseModel):
    """Outcome of one cached page load."""

    url: str
    mode: CacheMode
    files_dir: str
    stats: CacheStats
    navigation_error: str | None = None


def build_browser_profile(headless: bool | None = None):
    """Browser profile from settings, optionally overriding headless mode."""
    from browser_use import BrowserProfile

    profile = BrowserProfile(
        headless=settings.browser.headless if headless is None else headless,
        cdp_url=settings.browser.cdp_url,
    )
    if settings.browser.cdp_url:
        logger.info(f"Using external browser via CDP: {settings.browser.cdp_url}")
    return profile


async def navigate(interceptor: CacheInterceptor, browser_session, url: str) -> None:
    """Navigate the intercepted page with a session-scoped Page.navigate.

    Raises:
        BrowserError: If the browser reports a navigation error.
    """
    nav_result = await browser_session.cdp_client.send.Page.navigate(
        params={"url": url, "transitionType": "address_bar"},
        session_id=interceptor.session_id,
    )
    error_text = nav_result.get("errorText")
    if error_text:
        # Offline misses on the main document surface here as net::ERR_FAILED
        raise BrowserError(f"Navigation to {url} failed: {error_text}")


async def browse(
    url: str,
    mode: CacheMode | str | None = None,
    files_dir: str | None = None,
    headless: bool | None = None,
    settle_seconds: float | None = None,
) -> BrowseResult:
    """Load a URL in a fresh browser with every request going through the cache.

    Args:
        url: Page to load
        mode: Cache mode (default from settings)
        files_dir: Cache root (default from settings)
        headless: Run the browser headless (default from settings)
        settle_seconds: How long to keep intercepting after navigation

    Returns:
        Counters for the page session, plus the navigation error if the page
        itself could not be loaded (e.g. an uncached document in offline mode).
    """
    from browser_use.browser.session import BrowserSession

    interceptor = CacheInterceptor(
        files_dir=files_dir or str(settings.cache.get_files_dir()),
        mode=mode or settings.cache.mode,
        index_name=settings.cache.index_name,
    )
    navigation_error: str | None = None
    wait = settings.browser.settle_seconds if settle_seconds is None else settle_seconds

    browser_session = BrowserSession(browser_profile=build_browser_profile(headless))
    await browser_session.start()
    try:
        await interceptor.attach(browser_session)
        try:
            await navigate(interceptor, browser_session, url)
            await asyncio.sleep(wait)
        except BrowserError as e:
            logger.warning(str(e))
            navigation_error = str(e)
        finally:
            await interceptor.finalize()
            await interceptor.detach()
    finally:
        await browser_session.stop()

    result = BrowseResult(
        url=url,
        mode=interceptor.controller.mode,
        files_dir=str(interceptor.controller.files_dir),
        stats=interceptor.stats,
        navigation_error=navigation_error,
    )
    logger.info(f"Browsed {url}: {result.stats.model_dump()}")
    return result
