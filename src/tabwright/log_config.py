"""
Structured logging setup.
"""

from __future__ import annotations

import logging

import structlog


def configure_logging(verbose: bool = False, level: int | None = None) -> None:
    """
    Route structlog through stdlib logging.

    Args:
        verbose: Human-readable console output instead of JSON lines
        level: Minimum stdlib level; DEBUG when verbose, INFO otherwise
    """
    if level is None:
        level = logging.DEBUG if verbose else logging.INFO

    renderer = structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    logging.getLogger().setLevel(level)
