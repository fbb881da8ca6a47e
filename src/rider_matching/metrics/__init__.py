"""Matching outcome statistics and Prometheus export."""

from .stats import MatchingMetrics, MatchingStats

__all__ = ["MatchingMetrics", "MatchingStats"]
