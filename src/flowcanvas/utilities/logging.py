"""Logging utilities for FlowCanvas."""

import logging
from typing import Literal, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

_LOG_NAMESPACE = "FlowCanvas"

LogLevel = Union[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], int]


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger nested under the FlowCanvas namespace.

    Args:
        name: The name of the logger, which will be prefixed with 'FlowCanvas.'

    Returns:
        logging.Logger: A configured logger instance.
    """
    return logging.getLogger(f"{_LOG_NAMESPACE}.{name}")


def configure_logging(level: Optional[LogLevel] = None) -> None:
    """
    Configure logging for FlowCanvas.

    Args:
        level: The log level to use (string or int). Defaults to the
            configured ``log_level`` setting.
    """
    if level is None:
        from flowcanvas.settings import get_settings

        level = get_settings().log_level

    logger = logging.getLogger(_LOG_NAMESPACE)
    # Remove any existing handlers to avoid duplicates on reconfiguration
    for hdlr in logger.handlers[:]:
        logger.removeHandler(hdlr)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

    if isinstance(level, str):
        level = level.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {level}")
        logger.setLevel(getattr(logging, level))
    else:
        logger.setLevel(level)
