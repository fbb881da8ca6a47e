"""Logging setup and configuration."""

import logging
import sys
from typing import TextIO

from rider_matching.core.correlation import CorrelationFilter

from .filters import PIIFilter
from .formatters import DevFormatter, JSONFormatter

# Chatty third-party loggers used by the geo service client
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    environment: str = "development",
    stream: TextIO | None = None,
) -> logging.Handler:
    """Route all records through a single handler on the root logger.

    The handler masks PII and stamps each record with the trip being matched
    before formatting. Returns the installed handler.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter(environment) if json_output else DevFormatter())
    handler.addFilter(PIIFilter())
    handler.addFilter(CorrelationFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
