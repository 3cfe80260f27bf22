"""CLI interface for the cocproxy browser cache."""

import asyncio
import json

import typer

from .config import settings
from .controller import CacheMode
from .exceptions import BrowserError, InvalidURLError
from .paths import resolve_path

app = typer.Typer(help="On-disk response cache for browser automation")


@app.command()
def browse(
    url: str = typer.Argument(..., help="Page to load through the cache"),
    mode: CacheMode = typer.Option(None, "--mode", "-m", help="proxy: misses go to the network; offline: misses are aborted"),
    files_dir: str = typer.Option(None, "--files-dir", "-d", help="Cache root directory"),
    headless: bool = typer.Option(None, "--headless/--no-headless", help="Run the browser headless"),
    wait: float = typer.Option(None, "--wait", "-w", help="Seconds to keep intercepting after navigation"),
) -> None:
    """Load a page with every request served from or captured into the cache."""
    from .session import browse as browse_cached

    try:
        result = asyncio.run(browse_cached(url, mode=mode, files_dir=files_dir, headless=headless, settle_seconds=wait))
    except BrowserError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    print(json.dumps(result.model_dump(mode="json"), indent=2))
    if result.navigation_error:
        raise typer.Exit(code=2)


@app.command()
def path(
    url: str = typer.Argument(..., help="Request URL"),
    files_dir: str = typer.Option(None, "--files-dir", "-d", help="Cache root directory"),
) -> None:
    """Show where a URL's response is stored and whether it is cached."""
    root = files_dir or settings.cache.get_files_dir()
    try:
        local_path = resolve_path(url, root, settings.cache.index_name)
    except InvalidURLError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    status = "cached" if local_path.is_file() else "missing"
    print(f"{local_path} ({status})")


@app.command()
def config() -> None:
    """Show current configuration."""
    print(f"Mode: {settings.cache.mode}")
    print(f"Files dir: {settings.cache.get_files_dir()}")
    print(f"Index name: {settings.cache.index_name}")
    print(f"Headless: {settings.browser.headless}")
    print(f"CDP URL: {settings.browser.cdp_url or '(launch new browser)'}")
    print(f"Settle seconds: {settings.browser.settle_seconds}")


if __name__ == "__main__":
    app()
