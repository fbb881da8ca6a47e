import threading

from pydantic import BaseModel, ConfigDict

from rider_matching.matching.models import MatchingOutcome


class MatchingMetrics(BaseModel):
    """Point-in-time aggregate of matching activity."""

    model_config = ConfigDict(frozen=True)

    total_requests: int
    successful_matches: int
    failed_matches: int
    cancelled_matches: int
    upstream_errors: int
    success_rate: float
    avg_processing_time_ms: float
    avg_match_score: float
    avg_driver_distance_km: float
    active_sessions: int


class MatchingStats:
    """Running accumulators for O(1) metrics snapshots.

    Thread-safe: every update and read holds the same lock; snapshots are
    eventually consistent with sessions that are still in flight.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._zero()

    def _zero(self) -> None:
        self._total_requests = 0
        self._successful = 0
        self._failed = 0
        self._cancelled = 0
        self._upstream_errors = 0
        self._processing_ms_sum = 0.0
        self._processing_count = 0
        self._score_sum = 0.0
        self._distance_sum = 0.0

    def record_request(self) -> None:
        with self._lock:
            self._total_requests += 1

    def record_outcome(self, outcome: MatchingOutcome) -> None:
        with self._lock:
            self._processing_ms_sum += outcome.processing_time_ms
            self._processing_count += 1

            if outcome.success and outcome.matched_driver is not None:
                self._successful += 1
                self._score_sum += outcome.score
                self._distance_sum += outcome.matched_driver.distance_km
            elif outcome.status == "cancelled":
                self._cancelled += 1
            else:
                self._failed += 1

    def record_upstream_error(self) -> None:
        with self._lock:
            self._upstream_errors += 1

    def snapshot(self, active_sessions: int = 0) -> MatchingMetrics:
        with self._lock:
            total = self._total_requests
            successful = self._successful
            failed = self._failed
            cancelled = self._cancelled
            upstream_errors = self._upstream_errors
            processing_sum = self._processing_ms_sum
            processing_count = self._processing_count
            score_sum = self._score_sum
            distance_sum = self._distance_sum

        return MatchingMetrics(
            total_requests=total,
            successful_matches=successful,
            failed_matches=failed,
            cancelled_matches=cancelled,
            upstream_errors=upstream_errors,
            success_rate=(successful / total * 100) if total > 0 else 0.0,
            avg_processing_time_ms=(
                processing_sum / processing_count if processing_count > 0 else 0.0
            ),
            avg_match_score=score_sum / successful if successful > 0 else 0.0,
            avg_driver_distance_km=distance_sum / successful if successful > 0 else 0.0,
            active_sessions=active_sessions,
        )

    def reset(self) -> None:
        with self._lock:
            self._zero()
