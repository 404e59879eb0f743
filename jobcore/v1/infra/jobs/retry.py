"""
Retry/backoff policy shared by the durable queue, the outbox drain and the
enrichment state machine.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol


class BackoffPolicy(Protocol):
    """Computes the wait before the attempt following ``attempt``."""

    def delay(self, attempt: int) -> timedelta: ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """``base * 2^attempt`` minutes: 2, 4, 8, ... for a one minute base."""

    base_minutes: float = 1.0

    def delay(self, attempt: int) -> timedelta:
        return timedelta(minutes=self.base_minutes * (2 ** max(attempt, 0)))


@dataclass(frozen=True)
class LadderBackoff:
    """Fixed delays indexed by attempt number; the last step repeats."""

    steps_minutes: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.steps_minutes:
            raise ValueError("LadderBackoff needs at least one step")

    @classmethod
    def of(cls, steps: Sequence[float]) -> "LadderBackoff":
        return cls(tuple(steps))

    def delay(self, attempt: int) -> timedelta:
        index = min(max(attempt, 1), len(self.steps_minutes)) - 1
        return timedelta(minutes=self.steps_minutes[index])


@dataclass(frozen=True)
class RetryDecision:
    dead_letter: bool
    next_attempt_at: datetime | None = None
    delay: timedelta | None = None


def decide_retry(
    attempt: int,
    max_attempts: int,
    policy: BackoffPolicy,
    now: datetime,
    *,
    permanent: bool = False,
    retry_after: timedelta | None = None,
) -> RetryDecision:
    """Decide between rescheduling and dead-lettering after a failed attempt.

    ``attempt`` is the 1-based number of the attempt that just failed.
    """
    if permanent or attempt >= max_attempts:
        return RetryDecision(dead_letter=True)

    delay = retry_after if retry_after is not None else policy.delay(attempt)
    return RetryDecision(dead_letter=False, next_attempt_at=now + delay, delay=delay)
