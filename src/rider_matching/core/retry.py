"""Cooldown policy between matching attempts."""

from dataclasses import dataclass

from rider_matching.settings import MatchingSettings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: MatchingSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_delay_ms / 1000.0,
            multiplier=settings.retry_backoff_multiplier,
            max_delay=settings.max_retry_delay_ms / 1000.0,
        )

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt.

        With the default multiplier of 1.0 every cooldown equals base_delay.
        """
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def has_attempts_left(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts
