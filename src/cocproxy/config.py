"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Paths ---

APP_NAME = "cocproxy"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/cocproxy)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    return base / APP_NAME


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file() -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        text = CONFIG_FILE.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        return json.loads(text)
    except (OSError, json.JSONDecodeError):
        return {}


def save_config_file(config_data: dict[str, Any]) -> None:
    """Save settings to the JSON config file."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config_data, indent=2), encoding="utf-8")


ModeType = Literal["proxy", "offline"]


class CacheSettings(BaseSettings):
    """On-disk response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="COCPROXY_CACHE_")

    mode: ModeType = Field(default="proxy", description="proxy: misses go to the network; offline: misses are aborted")
    files_dir: str = Field(default="./files", description="Directory holding cached response bodies")
    index_name: str = Field(default="index.html", description="File name stored for directory-like URLs")

    def get_files_dir(self) -> Path:
        """Get the cache root with ~ expanded (not created)."""
        return Path(self.files_dir).expanduser()


class BrowserSettings(BaseSettings):
    """Browser configuration."""

    model_config = SettingsConfigDict(env_prefix="COCPROXY_BROWSER_")

    headless: bool = Field(default=True)
    cdp_url: Optional[str] = Field(default=None, description="Attach to an already running browser via CDP")
    settle_seconds: float = Field(default=2.0, description="Time to keep intercepting after navigation")


TransportType = Literal["stdio", "streamable-http", "sse"]


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="COCPROXY_SERVER_")

    logging_level: str = Field(default="INFO")
    transport: TransportType = Field(default="stdio", description="MCP transport: stdio, streamable-http, or sse")
    host: str = Field(default="127.0.0.1", description="Host for HTTP transports")
    port: int = Field(default=8384, description="Port for HTTP transports")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="COCPROXY_", extra="ignore")

    cache: CacheSettings = Field(default_factory=CacheSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def save(self) -> Path:
        """Save current configuration to file."""
        data = self.model_dump(mode="json", exclude_none=True)
        save_config_file(data)
        return CONFIG_FILE


def _with_file_values(section: type[BaseSettings], file_values: dict[str, Any]) -> Any:
    """Build a settings section where env vars win over file values."""
    from_env = section()
    env_values = from_env.model_dump(include=from_env.model_fields_set)
    return section(**{**file_values, **env_values})


def _load_settings() -> AppSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file()
    return AppSettings(
        cache=_with_file_values(CacheSettings, file_data.get("cache", {})),
        browser=_with_file_values(BrowserSettings, file_data.get("browser", {})),
        server=_with_file_values(ServerSettings, file_data.get("server", {})),
    )


settings = _load_settings()
