"""
Retry policy: a pure exponential backoff schedule.

The same schedule drives two things: tenacity retries of storage units of
work in the orchestrator, and the earliest time a failed unsubscribe may be
retried in bulk.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from tenacity import RetryCallState, retry_if_exception_type, stop_after_attempt

from ..exceptions import StorageError


def backoff_delay(attempt: int, base_delay: float, max_delay: float, multiplier: float = 2.0) -> float:
    """Delay in seconds before retry number `attempt` (1-based), capped at max_delay."""
    if attempt < 1:
        return 0.0
    return min(base_delay * (multiplier ** (attempt - 1)), max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 0.5
    max_delay: float = 300.0
    max_attempts: int = 4
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.max_delay, self.multiplier)

    def next_retry_at(self, last_attempt_at: datetime, failures: int) -> datetime:
        """Earliest time another attempt is allowed after `failures` consecutive failures."""
        return last_attempt_at + timedelta(seconds=self.delay(failures))

    def tenacity_wait(self, retry_state: RetryCallState) -> float:
        """tenacity `wait=` callable following this schedule."""
        return self.delay(retry_state.attempt_number)

    def storage_retry_kwargs(self, sleep=None) -> dict:
        """Keyword arguments for tenacity.Retrying around a storage unit of work."""
        kwargs = {
            'retry': retry_if_exception_type(StorageError),
            'wait': self.tenacity_wait,
            'stop': stop_after_attempt(self.max_attempts),
            'reraise': True,
        }
        if sleep is not None:
            kwargs['sleep'] = sleep
        return kwargs
