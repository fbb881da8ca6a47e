"""Per-trip serialization of matching work over a shared session map."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TypeVar

from rider_matching.core.exceptions import AlreadyTerminalError, SessionNotFoundError
from rider_matching.matching.models import MatchingOutcome
from rider_matching.matching.session import MatchingSession, SessionSnapshot

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    session: MatchingSession
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    outcome: MatchingOutcome | None = None
    discarded: bool = False


@dataclass(frozen=True)
class DriverReservation:
    trip_id: str
    expires_at: datetime


class ConcurrencyGuard:
    """Owns the trip_id -> session map and the driver reservations.

    Thread-safe: the map, the reservations and every session mutation go
    through an RLock that is only held for short, non-awaiting sections. Each
    entry additionally carries an asyncio.Lock so that at most one find_match
    runs per trip, while different trips never wait on each other.

    A driver is held by at most one trip at a time. Reservations lapse after
    ``reservation_ttl_seconds`` and are released early when their trip is
    cancelled, discarded or evicted.
    """

    def __init__(
        self, retention_seconds: float = 300.0, reservation_ttl_seconds: float = 300.0
    ) -> None:
        self._retention_seconds = retention_seconds
        self._reservation_ttl = timedelta(seconds=reservation_ttl_seconds)
        self._state_lock = threading.RLock()
        self._entries: dict[str, SessionEntry] = {}
        self._reservations: dict[str, DriverReservation] = {}

    def get_or_create(self, trip_id: str, max_attempts: int, now: datetime) -> SessionEntry:
        with self._state_lock:
            entry = self._entries.get(trip_id)
            if entry is not None and entry.session.is_expired(now, self._retention_seconds):
                self._drop(trip_id, entry)
                entry = None
            if entry is None:
                entry = SessionEntry(
                    session=MatchingSession(
                        trip_id=trip_id, max_attempts=max_attempts, created_at=now
                    )
                )
                self._entries[trip_id] = entry
                logger.debug("Created matching session for trip %s", trip_id)
            return entry

    @asynccontextmanager
    async def hold(
        self, trip_id: str, max_attempts: int, now: datetime
    ) -> AsyncIterator[SessionEntry]:
        """Acquire the trip's slot, creating its session if absent.

        Waiters whose entry was discarded while they queued move on to the
        replacement entry instead of running against a dead session.
        """
        while True:
            entry = self.get_or_create(trip_id, max_attempts, now)
            await entry.lock.acquire()
            with self._state_lock:
                discarded = entry.discarded
            if not discarded:
                break
            entry.lock.release()

        try:
            yield entry
        finally:
            entry.lock.release()

    def update(self, entry: SessionEntry, fn: Callable[[MatchingSession], T]) -> T:
        """Run fn against the entry's session under the state lock."""
        with self._state_lock:
            return fn(entry.session)

    def record_outcome(self, entry: SessionEntry, outcome: MatchingOutcome) -> None:
        with self._state_lock:
            entry.outcome = outcome

    def reserve_first(
        self, entry: SessionEntry, driver_ids: Iterable[str], now: datetime
    ) -> str | None:
        """Hold the first driver not already held by another trip.

        Returns the reserved driver id, or None when every driver is taken or
        the session is no longer searching.
        """
        trip_id = entry.session.trip_id
        with self._state_lock:
            if entry.session.is_terminal or entry.discarded:
                return None
            for driver_id in driver_ids:
                if self._held_by_other(driver_id, trip_id, now):
                    continue
                self._release_trip(trip_id)
                self._reservations[driver_id] = DriverReservation(
                    trip_id=trip_id, expires_at=now + self._reservation_ttl
                )
                logger.debug("Reserved driver %s for trip %s", driver_id, trip_id)
                return driver_id
        return None

    def is_reserved(self, driver_id: str, now: datetime, for_trip: str | None = None) -> bool:
        """True when driver_id is held by a trip other than ``for_trip``."""
        with self._state_lock:
            return self._held_by_other(driver_id, for_trip, now)

    def release_trip(self, trip_id: str) -> int:
        with self._state_lock:
            return self._release_trip(trip_id)

    def discard(self, entry: SessionEntry) -> bool:
        """Forget a still-searching entry so the trip can be resubmitted from scratch.

        Terminal sessions (e.g. cancelled mid-flight) are kept so status reads
        keep reporting them until the retention window passes.
        """
        with self._state_lock:
            if entry.session.is_terminal:
                return False
            self._drop(entry.session.trip_id, entry)
            return True

    def snapshot(self, trip_id: str) -> SessionSnapshot:
        with self._state_lock:
            entry = self._entries.get(trip_id)
            if entry is None:
                raise SessionNotFoundError(
                    f"No matching session for trip {trip_id}", details={"trip_id": trip_id}
                )
            return entry.session.snapshot()

    def cancel(self, trip_id: str, now: datetime) -> SessionSnapshot:
        with self._state_lock:
            entry = self._entries.get(trip_id)
            if entry is None:
                raise SessionNotFoundError(
                    f"No matching session for trip {trip_id}", details={"trip_id": trip_id}
                )
            if entry.session.is_terminal:
                raise AlreadyTerminalError(
                    f"Matching for trip {trip_id} already {entry.session.state.value}",
                    details={"trip_id": trip_id, "state": entry.session.state.value},
                )
            entry.session.cancel(now)
            self._release_trip(trip_id)
            return entry.session.snapshot()

    def evict_expired(self, now: datetime) -> int:
        with self._state_lock:
            expired = [
                (trip_id, entry)
                for trip_id, entry in self._entries.items()
                if entry.session.is_expired(now, self._retention_seconds)
            ]
            for trip_id, entry in expired:
                self._drop(trip_id, entry)

            lapsed = [d for d, r in self._reservations.items() if r.expires_at <= now]
            for driver_id in lapsed:
                del self._reservations[driver_id]
        if expired:
            logger.debug("Evicted %d expired matching sessions", len(expired))
        return len(expired)

    def active_count(self) -> int:
        with self._state_lock:
            return sum(1 for entry in self._entries.values() if not entry.session.is_terminal)

    def __len__(self) -> int:
        with self._state_lock:
            return len(self._entries)

    def _held_by_other(self, driver_id: str, trip_id: str | None, now: datetime) -> bool:
        # Must be called under _state_lock
        reservation = self._reservations.get(driver_id)
        if reservation is None or reservation.expires_at <= now:
            return False
        return reservation.trip_id != trip_id

    def _release_trip(self, trip_id: str) -> int:
        # Must be called under _state_lock
        held = [d for d, r in self._reservations.items() if r.trip_id == trip_id]
        for driver_id in held:
            del self._reservations[driver_id]
        return len(held)

    def _drop(self, trip_id: str, entry: SessionEntry) -> None:
        # Must be called under _state_lock
        entry.discarded = True
        if self._entries.get(trip_id) is entry:
            del self._entries[trip_id]
            self._release_trip(trip_id)

    def clear(self) -> None:
        with self._state_lock:
            for entry in self._entries.values():
                entry.discarded = True
            self._entries.clear()
            self._reservations.clear()
