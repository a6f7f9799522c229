"""
Retry policy for failed deliveries.

Pure mapping from failure count to the next action. The table is data
so it can be tuned through settings.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence

from noterelay.config import settings


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of consulting the policy."""
    retry: bool
    delay: timedelta | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed escalating backoff with a retry ceiling.

    failure_count is 1-indexed. Below max_retries the note is retried
    after backoff_schedule[failure_count - 1], reusing the last entry
    for overflow; at or above max_retries the note is given up.
    """
    max_retries: int = 3
    backoff_schedule: tuple[float, ...] = (1.0, 5.0, 25.0)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if not self.backoff_schedule:
            raise ValueError("backoff_schedule must contain at least one delay")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls.from_values(settings.MAX_RETRIES, settings.BACKOFF_SCHEDULE)

    @classmethod
    def from_values(cls, max_retries: int, backoff_schedule: Sequence[float]) -> "RetryPolicy":
        return cls(max_retries=max_retries, backoff_schedule=tuple(backoff_schedule))

    def backoff(self, failure_count: int) -> timedelta:
        """Delay before the next round after failure_count failures."""
        if failure_count < 1:
            raise ValueError("failure_count is 1-indexed")
        index = min(failure_count - 1, len(self.backoff_schedule) - 1)
        return timedelta(seconds=self.backoff_schedule[index])

    def decide(self, failure_count: int) -> RetryDecision:
        if failure_count >= self.max_retries:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.backoff(failure_count))
