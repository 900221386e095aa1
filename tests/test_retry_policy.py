"""Tests for the job status transition function and RetryPolicy."""
import pytest
from datetime import datetime, timedelta, timezone

from job_queue.retry_policy import (
    DEFAULT_BACKOFF, DEFAULT_MAX_ATTEMPTS, RetryPolicy, Transition, next_state,
)
from models.schemas import JobStatus

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class TestNextState:

    def test_defaults(self):
        assert DEFAULT_MAX_ATTEMPTS == 3
        assert DEFAULT_BACKOFF == timedelta(minutes=5)

    def test_first_failure_reschedules(self):
        t = next_state(0, False, NOW)
        assert t == Transition(JobStatus.PENDING, 1, NOW + timedelta(minutes=5))
        assert t.will_retry
        assert not t.is_terminal

    def test_second_failure_reschedules(self):
        t = next_state(1, False, NOW)
        assert t.status == JobStatus.PENDING
        assert t.attempts == 2
        assert t.scheduled_at == NOW + timedelta(minutes=5)

    def test_third_failure_is_terminal(self):
        t = next_state(2, False, NOW)
        assert t.status == JobStatus.FAILED
        assert t.attempts == 3
        assert t.scheduled_at == NOW
        assert t.is_terminal

    @pytest.mark.parametrize("attempts", [0, 1, 2])
    def test_success_keeps_attempts(self, attempts):
        t = next_state(attempts, True, NOW)
        assert t.status == JobStatus.SENT
        assert t.attempts == attempts
        assert t.is_terminal

    def test_success_leaves_schedule_untouched(self):
        earlier = NOW - timedelta(hours=1)
        t = next_state(1, True, NOW, scheduled_at=earlier)
        assert t.scheduled_at == earlier

    def test_backoff_is_fixed_not_exponential(self):
        first = next_state(0, False, NOW, max_attempts=10)
        later = next_state(7, False, NOW, max_attempts=10)
        assert first.scheduled_at - NOW == later.scheduled_at - NOW

    def test_custom_limits(self):
        t = next_state(0, False, NOW, max_attempts=1)
        assert t.status == JobStatus.FAILED
        t = next_state(0, False, NOW, max_attempts=5, backoff=timedelta(seconds=30))
        assert t.scheduled_at == NOW + timedelta(seconds=30)


class TestRetryPolicy:

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_walks_to_failed(self):
        policy = RetryPolicy()
        attempts, now = 0, NOW
        statuses = []
        for _ in range(3):
            t = policy.on_failure(attempts, now)
            statuses.append(t.status)
            attempts, now = t.attempts, t.scheduled_at
        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
        assert attempts == 3

    def test_backoff_seconds(self):
        policy = RetryPolicy(max_attempts=3, backoff_seconds=60)
        assert policy.on_failure(0, NOW).scheduled_at == NOW + timedelta(seconds=60)

    def test_on_success(self):
        assert RetryPolicy().on_success(2, NOW).status == JobStatus.SENT
