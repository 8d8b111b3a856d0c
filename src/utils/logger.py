"""Centralized logging setup for the document-to-ledger pipeline.

All modules obtain their logger through :func:`get_logger` so that a single
stdout handler, installed once by :func:`setup_logging`, formats every
pipeline stage the same way.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO (one line per HTTP request or
# SQL statement).
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "PIL")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with the pipeline's standard format.

    Calling this more than once is a no-op, so both the API server and the
    CLI can call it unconditionally at startup.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)
