"""
Structured logging setup for the agent.

The level is read from LOG_LEVEL (default INFO) and the renderer from
LOG_FORMAT ("console" or "json").
"""

import logging
import os

import structlog
from dotenv import load_dotenv

load_dotenv()

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(level: int | str | None = logging.INFO, fmt: str | None = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level, as an int or a level name. Defaults to INFO.
        fmt: "console" for coloured developer output, "json" for log shippers.
            Defaults to the LOG_FORMAT environment variable.
    """
    if isinstance(level, str):
        level = LOG_LEVELS.get(level.upper(), logging.INFO)
    if level is None:
        level = logging.INFO

    logging.basicConfig(level=level)

    fmt = (fmt or os.getenv("LOG_FORMAT", "console")).lower()
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
            pad_event=50,
        )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))
