"""Correlation context for tagging log records with the trip being matched."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# Context variables survive across awaits and are isolated per asyncio task
current_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
current_trip_id: ContextVar[str | None] = ContextVar("trip_id", default=None)


class CorrelationFilter(logging.Filter):
    """Logging filter that adds correlation and trip IDs to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = current_correlation_id.get() or "-"
        trip_id = current_trip_id.get()
        if trip_id and not hasattr(record, "trip_id"):
            record.trip_id = trip_id
        return True


@contextmanager
def with_correlation(correlation_id: str, trip_id: str | None = None) -> Iterator[None]:
    """Context manager to set correlation ID for a block of code.

    Usage:
        with with_correlation(request.trip_id, trip_id=request.trip_id):
            logger.info("Matching attempt")  # carries correlation_id and trip_id
    """
    token = current_correlation_id.set(correlation_id)
    trip_token = current_trip_id.set(trip_id)
    try:
        yield
    finally:
        current_trip_id.reset(trip_token)
        current_correlation_id.reset(token)
