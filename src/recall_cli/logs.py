"""structlog setup shared by the CLI and the web server."""

import logging
import os
import sys

import structlog


def configure_logging(level: str | None = None) -> None:
    """Route structlog output to stderr, filtered at ``level``.

    Defaults to RECALL_LOG_LEVEL, then WARNING so normal CLI output stays clean.
    """
    name = (level or os.environ.get("RECALL_LOG_LEVEL") or "WARNING").upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
