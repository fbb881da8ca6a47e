"""Log formatters for JSON and human-readable output."""

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Matching context attached by CorrelationFilter or passed via ``extra=``
CONTEXT_FIELDS = ("correlation_id", "trip_id", "rider_id", "driver_id")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: value
        for name in CONTEXT_FIELDS
        if (value := getattr(record, name, None)) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, carrying the matching context of the record."""

    def __init__(self, environment: str = "development"):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "env": self.environment,
        }
        log_data.update(_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class DevFormatter(logging.Formatter):
    """Human-readable format; rider and driver ids are appended when present."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s [%(levelname)8s] [corr=%(correlation_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        line = super().format(record)
        parties = [
            f"{name}={record.__dict__[name]}"
            for name in ("rider_id", "driver_id")
            if record.__dict__.get(name) is not None
        ]
        if parties:
            line = f"{line} [{' '.join(parties)}]"
        return line
