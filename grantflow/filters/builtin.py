# grantflow/filters/builtin.py
from datetime import timedelta
from typing import Sequence

from grantflow.filters.base import JobFilter
from grantflow.common.states import FailedState, RetryState
import logging
from grantflow.server.context import ElectStateContext

logger = logging.getLogger(__name__)

# Seconds to wait before retry N (0-based); the last entry covers any later retry.
DEFAULT_RETRY_DELAYS = (60, 300, 900)


def backoff_delay(retry_count: int, delays: Sequence[int] = DEFAULT_RETRY_DELAYS) -> int:
    if retry_count < len(delays):
        return delays[retry_count]
    return delays[-1]


class RetryFilter(JobFilter):
    """Turns a retryable failure into a delayed retry while attempts remain.

    The attempt ceiling comes from the job itself (``max_retries``), so each
    job carries its own budget from enqueue time.
    """

    def __init__(self, delays: Sequence[int] = DEFAULT_RETRY_DELAYS):
        self.delays = tuple(delays)

    def on_state_election(self, elect_state_context: ElectStateContext):
        job = elect_state_context.job
        candidate_state = elect_state_context.candidate_state

        if not isinstance(candidate_state, FailedState):
            return
        if not candidate_state.retryable:
            logger.debug(f"RetryFilter: Job {job.id} failure is not retryable.")
            return

        current_retry_count = job.retry_count
        if current_retry_count >= job.max_retries:
            logger.debug(
                f"RetryFilter: Job {job.id} retries exhausted "
                f"({current_retry_count}/{job.max_retries}). Moving to Failed state."
            )
            return

        delay = backoff_delay(current_retry_count, self.delays)
        retry_at = elect_state_context.now + timedelta(seconds=delay)
        if retry_at <= job.scheduled_at:
            retry_at = job.scheduled_at + timedelta(seconds=delay)

        elect_state_context.candidate_state = RetryState(
            retry_at=retry_at,
            retry_count=current_retry_count + 1,
            exception_message=candidate_state.exception_message,
            reason=f"Retrying job... Attempt {current_retry_count + 1} of {job.max_retries}",
            created_at=elect_state_context.now,
        )
        logger.debug(
            f"RetryFilter: Job {job.id} will retry at {retry_at.isoformat()} "
            f"(retry_count={current_retry_count + 1})"
        )
