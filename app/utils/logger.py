"""
Structured logging for XRay Report Assistant.

Every module gets its logger from ``get_logger(component)`` so that each
event carries the component that emitted it.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import Processor

from app.config import settings


def _renderer(json_format: bool) -> list[Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(log_level: Optional[str] = None, json_format: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name, defaults to ``settings.log_level``
        json_format: JSON lines when True, coloured console output otherwise
    """
    numeric_level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_renderer(json_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # google-genai and httpx log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(component: str = "xray_report") -> structlog.BoundLogger:
    """Logger whose events are tagged with ``component``."""
    return structlog.get_logger(component).bind(component=component)


configure_logging(log_level=settings.log_level, json_format=not settings.debug)

logger = get_logger()
