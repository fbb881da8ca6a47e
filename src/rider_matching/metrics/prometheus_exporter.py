"""Prometheus metrics exporter for the matching engine.

Bridges MatchingMetrics snapshots into Prometheus gauges.
"""

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from rider_matching.metrics.stats import MatchingMetrics

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

matching_requests_total = Gauge(
    "matching_requests_total",
    "Matching requests that started a session loop",
    registry=REGISTRY,
)

matching_outcomes = Gauge(
    "matching_outcomes",
    "Matching sessions by terminal outcome",
    ["outcome"],
    registry=REGISTRY,
)

matching_upstream_errors = Gauge(
    "matching_upstream_errors",
    "Matching requests aborted by a collaborator failure",
    registry=REGISTRY,
)

matching_success_rate = Gauge(
    "matching_success_rate_percent",
    "Share of matching requests that produced a driver",
    registry=REGISTRY,
)

matching_avg_processing_ms = Gauge(
    "matching_avg_processing_milliseconds",
    "Average wall-clock time of a find_match call",
    registry=REGISTRY,
)

matching_avg_score = Gauge(
    "matching_avg_match_score",
    "Average score of matched drivers",
    registry=REGISTRY,
)

matching_avg_distance = Gauge(
    "matching_avg_driver_distance_km",
    "Average distance from matched driver to pickup",
    registry=REGISTRY,
)

matching_active_sessions = Gauge(
    "matching_active_sessions",
    "Sessions currently searching for a driver",
    registry=REGISTRY,
)


def update_metrics_from_snapshot(snapshot: MatchingMetrics) -> None:
    matching_requests_total.set(snapshot.total_requests)
    matching_outcomes.labels(outcome="matched").set(snapshot.successful_matches)
    matching_outcomes.labels(outcome="failed").set(snapshot.failed_matches)
    matching_outcomes.labels(outcome="cancelled").set(snapshot.cancelled_matches)
    matching_upstream_errors.set(snapshot.upstream_errors)
    matching_success_rate.set(snapshot.success_rate)
    matching_avg_processing_ms.set(snapshot.avg_processing_time_ms)
    matching_avg_score.set(snapshot.avg_match_score)
    matching_avg_distance.set(snapshot.avg_driver_distance_km)
    matching_active_sessions.set(snapshot.active_sessions)


def generate_metrics() -> bytes:
    """Render the registry in Prometheus text exposition format."""
    return generate_latest(REGISTRY)
