"""On-disk response cache for browser automation sessions."""

from .cdp import CacheInterceptor
from .config import settings
from .controller import CacheMode, CacheStats, InterceptionController
from .exceptions import BodyCaptureError, BrowserError, CocproxyError, InvalidURLError
from .paths import resolve_path

__all__ = [
    "CacheInterceptor",
    "CacheMode",
    "CacheStats",
    "InterceptionController",
    "resolve_path",
    "settings",
    "CocproxyError",
    "InvalidURLError",
    "BodyCaptureError",
    "BrowserError",
]
