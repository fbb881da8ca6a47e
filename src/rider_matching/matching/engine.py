"""Matching engine that coordinates driver lookup, selection and session tracking."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from math import isfinite
from typing import TYPE_CHECKING

from rider_matching.core.correlation import with_correlation
from rider_matching.core.exceptions import MatchingError, UpstreamUnavailableError
from rider_matching.core.retry import RetryPolicy
from rider_matching.geo.distance import estimate_eta_seconds
from rider_matching.matching.guard import ConcurrencyGuard, SessionEntry
from rider_matching.matching.models import (
    CandidateDriver,
    FareEstimate,
    MatchedDriver,
    MatchingOutcome,
    MatchingRequest,
    ScoredCandidate,
)
from rider_matching.matching.scoring import ScoringEngine
from rider_matching.matching.selector import (
    NO_DRIVERS_AVAILABLE,
    MatchSelector,
    NoMatchFound,
    SelectionResult,
    validate_request_coordinates,
)
from rider_matching.matching.session import MatchingSession, SessionSnapshot, SessionState
from rider_matching.metrics.prometheus_exporter import update_metrics_from_snapshot
from rider_matching.metrics.stats import MatchingMetrics, MatchingStats
from rider_matching.settings import MatchingSettings

if TYPE_CHECKING:
    from rider_matching.geo.locator import CandidateLocator, DistanceCalculator
    from rider_matching.pricing.fare import FareEstimator

logger = logging.getLogger(__name__)

MAX_WAIT_EXCEEDED = "max wait time exceeded"
MATCHING_CANCELLED = "matching cancelled"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MatchingEngine:
    """Finds a driver for each trip request.

    Concurrent find_match calls for the same trip run one at a time; calls for
    different trips proceed independently. Optional collaborators degrade as
    follows:

    - distance_calculator missing: haversine distances and an ETA at
      ``fallback_speed_kmh``
    - fare_estimator missing or failing: ``estimated_fare`` is None
    """

    def __init__(
        self,
        locator: "CandidateLocator",
        distance_calculator: "DistanceCalculator | None" = None,
        fare_estimator: "FareEstimator | None" = None,
        settings: MatchingSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._locator = locator
        self._distance_calculator = distance_calculator
        self._fare_estimator = fare_estimator
        self._settings = settings or MatchingSettings()
        self._clock = clock or _utc_now
        self._retry_policy = RetryPolicy.from_settings(self._settings)
        self._selector = MatchSelector(ScoringEngine(self._settings))
        self._guard = ConcurrencyGuard(
            retention_seconds=self._settings.session_retention_seconds,
            reservation_ttl_seconds=self._settings.reservation_ttl_seconds,
        )
        self._stats = MatchingStats()

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def find_match(self, request: MatchingRequest) -> MatchingOutcome:
        """Run the matching loop for a trip and return its outcome.

        Raises:
            InvalidCoordinatesError: pickup or destination out of range; no
                lookup is made and no session is created.
            UpstreamUnavailableError: a collaborator failed; the session is
                discarded so the trip can be resubmitted.
        """
        started = time.perf_counter()
        validate_request_coordinates(request)

        with with_correlation(request.trip_id, trip_id=request.trip_id):
            now = self._clock()
            self._guard.evict_expired(now)

            async with self._guard.hold(
                request.trip_id, self._retry_policy.max_attempts, now
            ) as entry:
                if entry.outcome is not None and entry.session.is_terminal:
                    logger.info(
                        "Trip %s already %s, returning recorded outcome",
                        request.trip_id,
                        entry.session.state.value,
                    )
                    return entry.outcome

                self._stats.record_request()
                logger.info(
                    "Starting matching for trip %s (vehicle_type=%s, priority=%s)",
                    request.trip_id,
                    request.vehicle_type or "any",
                    request.priority_level,
                    extra={"rider_id": request.rider_id},
                )

                try:
                    outcome = await self._run_attempts(request, entry, started)
                except (Exception, asyncio.CancelledError) as e:
                    self._guard.discard(entry)
                    if isinstance(e, UpstreamUnavailableError):
                        self._stats.record_upstream_error()
                        logger.error(
                            "Matching for trip %s aborted: %s",
                            request.trip_id,
                            e,
                            extra={"rider_id": request.rider_id},
                        )
                    raise

                self._guard.record_outcome(entry, outcome)
                self._stats.record_outcome(outcome)
                logger.info(
                    "Matching for trip %s finished: status=%s attempts=%s",
                    request.trip_id,
                    outcome.status,
                    outcome.retry_count,
                    extra={"rider_id": request.rider_id, "driver_id": outcome.driver_id},
                )
                return outcome

    def get_status(self, trip_id: str) -> SessionSnapshot:
        """Snapshot of the trip's session. Raises SessionNotFoundError."""
        return self._guard.snapshot(trip_id)

    def cancel(self, trip_id: str) -> SessionSnapshot:
        """Cancel a searching session.

        The in-flight loop notices at its next checkpoint and returns a
        cancelled outcome. Raises SessionNotFoundError or AlreadyTerminalError.
        """
        snapshot = self._guard.cancel(trip_id, self._clock())
        logger.info("Matching cancelled for trip %s after %d attempts", trip_id, snapshot.attempts)
        return snapshot

    def get_metrics(self) -> MatchingMetrics:
        snapshot = self._stats.snapshot(active_sessions=self._guard.active_count())
        update_metrics_from_snapshot(snapshot)
        return snapshot

    async def _run_attempts(
        self, request: MatchingRequest, entry: SessionEntry, started: float
    ) -> MatchingOutcome:
        while True:
            attempt = self._guard.update(entry, lambda s: self._begin_attempt(s))
            if attempt is None:
                return self._cancelled_outcome(request, entry, started)

            logger.debug(
                "Attempt %d/%d for trip %s",
                attempt,
                self._retry_policy.max_attempts,
                request.trip_id,
            )

            candidates = await self._locate(request)
            distances = await self._delegated_distances(request, candidates)
            result = self._selector.select(candidates, request, distances)

            held: tuple[ScoredCandidate, ...] | None = None
            reason = NO_DRIVERS_AVAILABLE
            if isinstance(result, NoMatchFound):
                reason = result.reason
            else:
                held = self._reserve_ranked(request, entry, result)
                if held is None:
                    if self._guard.update(entry, lambda s: s.state == SessionState.CANCELLED):
                        return self._cancelled_outcome(request, entry, started)
                    logger.info(
                        "All %d ranked drivers for trip %s are held by other trips",
                        len(result.ranked),
                        request.trip_id,
                    )

            if held is None:
                delay = self._guard.update(
                    entry, lambda s: self._after_no_match(s, request, reason)
                )
                if delay is None:
                    return self._terminal_outcome(request, entry, started)

                logger.info(
                    "No match for trip %s on attempt %d (%s), retrying in %.2fs",
                    request.trip_id,
                    attempt,
                    reason,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            matched = await self._describe_matches(request, held)
            winner = matched[0]
            fare = await self._estimate_fare(request, winner)

            committed = self._guard.update(
                entry, lambda s: self._commit_match(s, winner.driver_id)
            )
            if not committed:
                return self._cancelled_outcome(request, entry, started)

            return MatchingOutcome(
                trip_id=request.trip_id,
                success=True,
                status=SessionState.MATCHED.value,
                matched_driver=winner,
                score=winner.score,
                eta_seconds=winner.eta_seconds,
                estimated_fare=fare,
                alternatives=tuple(matched[1:]),
                retry_count=entry.session.attempts,
                processing_time_ms=self._elapsed_ms(started),
            )

    def _begin_attempt(self, session: MatchingSession) -> int | None:
        # Cancellation checkpoint before each attempt
        if session.state == SessionState.CANCELLED:
            return None
        return session.begin_attempt(self._clock())

    def _reserve_ranked(
        self, request: MatchingRequest, entry: SessionEntry, result: SelectionResult
    ) -> tuple[ScoredCandidate, ...] | None:
        """Hold the best driver no other trip holds.

        Returns the held winner followed by up to ``max_alternatives`` free
        runners-up, or None if nothing could be reserved.
        """
        now = self._clock()
        driver_id = self._guard.reserve_first(entry, [s.driver_id for s in result.ranked], now)
        if driver_id is None:
            return None

        logger.debug(
            "Driver reserved for trip %s", request.trip_id, extra={"driver_id": driver_id}
        )
        winner = next(s for s in result.ranked if s.driver_id == driver_id)
        alternatives = [
            s
            for s in result.ranked
            if s.driver_id != driver_id
            and not self._guard.is_reserved(s.driver_id, now, for_trip=request.trip_id)
        ]
        return (winner, *alternatives[: self._settings.max_alternatives])

    def _after_no_match(
        self, session: MatchingSession, request: MatchingRequest, reason: str
    ) -> float | None:
        """Schedule the next attempt and return its delay, or None when terminal."""
        if session.is_terminal:
            return None

        now = self._clock()
        if not self._retry_policy.has_attempts_left(session.attempts):
            session.mark_failed(reason, now)
            return None

        delay = self._retry_policy.delay_after(session.attempts)
        if request.max_wait_seconds is not None:
            waited = (now - session.created_at).total_seconds()
            if waited + delay > request.max_wait_seconds:
                session.mark_failed(MAX_WAIT_EXCEEDED, now)
                return None

        session.schedule_retry(now, delay, reason)
        return delay

    def _commit_match(self, session: MatchingSession, driver_id: str) -> bool:
        # Cancellation checkpoint before a late match is committed
        if session.state == SessionState.CANCELLED:
            self._guard.release_trip(session.trip_id)
            return False
        session.mark_matched(driver_id, self._clock())
        return True

    async def _locate(self, request: MatchingRequest) -> list[CandidateDriver]:
        """Query the locator, widening the radius until enough drivers come back.

        Starts at ``initial_search_radius_km`` and grows by ``radius_step_km``
        until ``min_candidates`` drivers are found or ``max_search_radius_km``
        has been searched.
        """
        settings = self._settings
        radius_km = min(settings.initial_search_radius_km, settings.max_search_radius_km)
        while True:
            candidates = await self._query_locator(request, radius_km)
            if (
                len(candidates) >= settings.min_candidates
                or radius_km >= settings.max_search_radius_km
            ):
                return candidates

            logger.debug(
                "Only %d drivers within %.1fkm of trip %s pickup, widening search",
                len(candidates),
                radius_km,
                request.trip_id,
            )
            radius_km = min(radius_km + settings.radius_step_km, settings.max_search_radius_km)

    async def _query_locator(
        self, request: MatchingRequest, radius_km: float
    ) -> list[CandidateDriver]:
        try:
            candidates = await self._locator.find_nearby_drivers(
                request.pickup, radius_km, self._settings.max_drivers_to_consider
            )
        except MatchingError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(
                f"Candidate lookup failed: {e}",
                details={"trip_id": request.trip_id, "radius_km": radius_km},
            ) from e
        return list(candidates)

    async def _delegated_distances(
        self, request: MatchingRequest, candidates: list[CandidateDriver]
    ) -> dict[str, float] | None:
        if not self._settings.delegate_distance or self._distance_calculator is None:
            return None

        eligible = self._selector.filter_candidates(candidates, request)
        calculator = self._distance_calculator

        async def fetch(candidate: CandidateDriver) -> tuple[str, float]:
            distance = await calculator.calculate_distance(candidate.location, request.pickup)
            if not isfinite(distance) or distance < 0:
                raise UpstreamUnavailableError(
                    f"Distance calculator returned {distance!r}",
                    details={"trip_id": request.trip_id, "driver_id": candidate.driver_id},
                )
            return candidate.driver_id, distance

        try:
            results = await asyncio.gather(*[fetch(c) for c in eligible])
        except MatchingError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(
                f"Distance calculation failed: {e}", details={"trip_id": request.trip_id}
            ) from e
        return dict(results)

    async def _describe_matches(
        self, request: MatchingRequest, ranked: tuple[ScoredCandidate, ...]
    ) -> list[MatchedDriver]:
        async def describe(scored: ScoredCandidate) -> MatchedDriver:
            eta = await self._estimate_eta(request, scored)
            return MatchedDriver.from_scored(scored, eta)

        return list(await asyncio.gather(*[describe(s) for s in ranked]))

    async def _estimate_eta(self, request: MatchingRequest, scored: ScoredCandidate) -> int:
        if self._distance_calculator is None:
            return estimate_eta_seconds(scored.distance_km, self._settings.fallback_speed_kmh)

        try:
            seconds = await self._distance_calculator.calculate_eta(
                scored.candidate.location, request.pickup, scored.candidate.vehicle_type
            )
        except MatchingError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(
                f"ETA calculation failed: {e}",
                details={"trip_id": request.trip_id, "driver_id": scored.driver_id},
            ) from e
        return round(seconds)

    async def _estimate_fare(
        self, request: MatchingRequest, winner: MatchedDriver
    ) -> FareEstimate | None:
        if self._fare_estimator is None:
            return None
        try:
            return await self._fare_estimator.estimate_fare(request, winner)
        except Exception as e:
            logger.warning("Fare estimate unavailable for trip %s: %s", request.trip_id, e)
            return None

    def _terminal_outcome(
        self, request: MatchingRequest, entry: SessionEntry, started: float
    ) -> MatchingOutcome:
        session = self._guard.update(entry, lambda s: s.snapshot())
        if session.state == SessionState.CANCELLED:
            return self._cancelled_outcome(request, entry, started)
        return MatchingOutcome(
            trip_id=request.trip_id,
            success=False,
            status=session.state.value,
            reason=session.failure_reason,
            retry_count=session.attempts,
            processing_time_ms=self._elapsed_ms(started),
        )

    def _cancelled_outcome(
        self, request: MatchingRequest, entry: SessionEntry, started: float
    ) -> MatchingOutcome:
        attempts = self._guard.update(entry, lambda s: s.attempts)
        logger.info("Trip %s observed cancellation after %d attempts", request.trip_id, attempts)
        return MatchingOutcome(
            trip_id=request.trip_id,
            success=False,
            status=SessionState.CANCELLED.value,
            reason=MATCHING_CANCELLED,
            retry_count=attempts,
            processing_time_ms=self._elapsed_ms(started),
        )

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    def clear(self) -> None:
        """Drop all sessions and statistics."""
        self._guard.clear()
        self._stats.reset()
