"""Structured logging for cache interceptors using structlog."""

import logging

import structlog

_configured = False


def setup_structured_logging(level: str = "INFO") -> None:
    """Configure structlog to render page lifecycle events as JSON lines.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
    )

    _configured = True


def get_page_logger(page_id: str | None, mode: str, name: str = "cocproxy.cache") -> structlog.stdlib.BoundLogger:
    """Logger bound to one intercepted page.

    Every event carries ``page_id`` (the CDP session id) and ``cache_mode``.
    """
    return structlog.get_logger(name).bind(page_id=page_id, cache_mode=mode)
