"""Welcome dispatch queue: enqueuer, worker and retry state machine."""
from job_queue.enqueuer import WelcomeEnqueuer
from job_queue.worker import DispatchWorker, resolve_destination
from job_queue.retry_policy import RetryPolicy, Transition, next_state

__all__ = [
    "WelcomeEnqueuer", "DispatchWorker", "resolve_destination",
    "RetryPolicy", "Transition", "next_state",
]
