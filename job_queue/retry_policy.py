"""
Retry policy — the job status state machine as a pure function.

    PENDING ──success──▶ SENT
    PENDING ──failure──▶ PENDING   (attempts + 1 < max, scheduled_at = now + backoff)
    PENDING ──failure──▶ FAILED    (attempts + 1 >= max, scheduled_at = now)

SENT and FAILED are terminal. Backoff is a fixed delay, not exponential.
Nothing here touches storage or the network.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from models.schemas import JobStatus

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = timedelta(minutes=5)


@dataclass(frozen=True)
class Transition:
    status: JobStatus
    attempts: int
    scheduled_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SENT, JobStatus.FAILED)

    @property
    def will_retry(self) -> bool:
        return self.status == JobStatus.PENDING


def next_state(
    attempts: int,
    success: bool,
    now: datetime,
    scheduled_at: datetime = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: timedelta = DEFAULT_BACKOFF,
) -> Transition:
    """
    Transition for a PENDING job after one processing attempt.

    Success keeps the attempt counter as is (a job goes from attempt n
    straight to SENT) and leaves scheduled_at untouched.
    """
    if success:
        return Transition(JobStatus.SENT, attempts, scheduled_at or now)

    new_attempts = attempts + 1
    if new_attempts >= max_attempts:
        return Transition(JobStatus.FAILED, new_attempts, now)
    return Transition(JobStatus.PENDING, new_attempts, now + backoff)


class RetryPolicy:
    """next_state bound to configured limits."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 backoff_seconds: int = int(DEFAULT_BACKOFF.total_seconds())):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = timedelta(seconds=backoff_seconds)

    def on_failure(self, attempts: int, now: datetime) -> Transition:
        return next_state(attempts, False, now,
                          max_attempts=self.max_attempts, backoff=self.backoff)

    def on_success(self, attempts: int, now: datetime) -> Transition:
        return next_state(attempts, True, now,
                          max_attempts=self.max_attempts, backoff=self.backoff)
