"""Logging configuration for the application loggers."""

import logging
import sys

from .core import get_settings

app_logger = logging.getLogger("app")

_formatter = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a stdout handler to the ``app`` logger and set its level.

    Calling this more than once only updates the level.

    Args:
        level: Log level name, defaults to ``LOG_LEVEL`` from settings.

    Returns:
        logging.Logger: The configured ``app`` logger.
    """
    app_logger.setLevel((level or get_settings().LOG_LEVEL).upper())
    if not app_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_formatter)
        app_logger.addHandler(handler)
    return app_logger
