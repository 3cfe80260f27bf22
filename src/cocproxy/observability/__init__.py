"""Observability helpers: structured logging bound to intercepted pages."""

from .logging import get_page_logger, setup_structured_logging

__all__ = [
    "get_page_logger",
    "setup_structured_logging",
]
