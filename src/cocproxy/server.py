"""MCP server exposing the browser response cache as tools."""

import json
import logging
import time

from fastmcp import FastMCP

from .config import settings
from .controller import CacheMode
from .exceptions import BrowserError, InvalidURLError
from .observability import setup_structured_logging
from .paths import resolve_path

logger = logging.getLogger("cocproxy")
logger.setLevel(getattr(logging, settings.server.logging_level.upper()))

_server_start_time = time.time()


def serve() -> FastMCP:
    """Create and configure the MCP server."""
    setup_structured_logging(settings.server.logging_level)

    server = FastMCP("cocproxy")

    @server.tool()
    async def browse_cached(url: str, mode: str | None = None) -> str:
        """
        Load a page in a browser with every request going through the on-disk cache.

        Cached responses are served from disk. In proxy mode uncached requests go to
        the network and successful responses are stored; in offline mode they are
        rejected so nothing leaves the machine.

        Args:
            url: Page to load
            mode: "proxy" or "offline" (default from settings)

        Returns:
            JSON object with hit/miss/abort/store counters for the page load
        """
        from .session import browse

        if mode is not None:
            try:
                mode = CacheMode(mode).value
            except ValueError:
                return f"Error: Invalid mode '{mode}'. Use: proxy, offline"

        try:
            result = await browse(url, mode=mode)
        except (BrowserError, InvalidURLError) as e:
            logger.error(f"browse_cached failed for {url}: {e}")
            return f"Error: {e}"

        return json.dumps(result.model_dump(mode="json"), indent=2)

    @server.tool()
    async def resolve_cache_path(url: str) -> str:
        """
        Show where the response for a URL is stored in the cache.

        Query strings are ignored, so URLs differing only in their query share a file.

        Args:
            url: Request URL

        Returns:
            JSON object with the storage path, whether it exists and its size
        """
        try:
            local_path = resolve_path(url, settings.cache.get_files_dir(), settings.cache.index_name)
        except InvalidURLError as e:
            return f"Error: {e}"

        exists = local_path.is_file()
        return json.dumps(
            {
                "url": url,
                "path": str(local_path),
                "exists": exists,
                "size": local_path.stat().st_size if exists else None,
            },
            indent=2,
        )

    @server.tool()
    async def health_check() -> str:
        """
        Health check with the active cache configuration.

        Returns:
            JSON object with server status and cache settings
        """
        files_dir = settings.cache.get_files_dir()
        return json.dumps(
            {
                "status": "healthy",
                "uptime_seconds": round(time.time() - _server_start_time, 1),
                "cache": {
                    "mode": settings.cache.mode,
                    "files_dir": str(files_dir),
                    "files_dir_exists": files_dir.is_dir(),
                },
                "browser": {
                    "headless": settings.browser.headless,
                    "cdp_url": settings.browser.cdp_url,
                },
            },
            indent=2,
        )

    return server


server_instance = serve()


def main() -> None:
    """Entry point for MCP server."""
    transport = settings.server.transport

    if transport == "stdio":
        # Logging goes to stderr; stdout carries the protocol stream
        server_instance.run(transport="stdio")
    elif transport in ("streamable-http", "sse"):
        logger.info(f"Starting cocproxy MCP server (mode: {settings.cache.mode}, transport: {transport})")
        logger.info(f"HTTP server at http://{settings.server.host}:{settings.server.port}/mcp")
        server_instance.run(transport=transport, host=settings.server.host, port=settings.server.port)
    else:
        raise ValueError(f"Unknown transport: {transport}")


if __name__ == "__main__":
    main()
