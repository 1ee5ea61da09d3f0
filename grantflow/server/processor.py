# grantflow/server/processor.py
import traceback
import logging
from datetime import datetime, UTC
from typing import Callable, List, Optional

from grantflow.common.job import Job
from grantflow.common.states import (
    BaseState,
    CompletedState,
    FailedState,
    ProcessingState,
    RetryState,
)
from grantflow.execution.performer import perform_job
from grantflow.storage.base import JobStorage, state_column_values
from grantflow.common.exceptions import HandlerNotFoundError
from ..filters.base import JobFilter, notify_filters
from ..filters.builtin import RetryFilter
from .context import ElectStateContext
from .registry import HandlerRegistry

logger = logging.getLogger(__name__)


class JobProcessor:
    """Runs one claimed job and records its outcome exactly once."""

    def __init__(
        self,
        job: Job,
        storage: JobStorage,
        registry: HandlerRegistry,
        filters: Optional[List[JobFilter]] = None,
        default_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.job = job
        self.storage = storage
        self.registry = registry
        self.filters = filters if filters is not None else [RetryFilter()]
        self.default_timeout = default_timeout
        self.clock = clock

    def process(self) -> Optional[BaseState]:
        registration = self.registry.get(self.job.job_type)
        if registration is None:
            logger.error(
                f"No handler found for job type {self.job.job_type!r} (job {self.job.id})"
            )
            return self.fail(
                HandlerNotFoundError(
                    f"No handler found for job type: {self.job.job_type}"
                )
            )

        timeout = registration.timeout_seconds
        if timeout is None:
            timeout = self.default_timeout

        logger.info(f"Processing job {self.job.id} ({self.job.job_type})")
        try:
            perform_job(registration.handler, self.job, timeout=timeout)
        except Exception as e:
            logger.error(f"Job {self.job.id} failed.", exc_info=True)
            return self.fail(e, details=traceback.format_exc())

        now = self.clock()
        duration = None
        if self.job.started_at is not None:
            duration = (now - self.job.started_at).total_seconds()
        completed_state = CompletedState(
            duration_seconds=duration,
            reason="Job performed successfully",
            created_at=now,
        )
        if not self.storage.set_job_state(
            self.job.id, completed_state, expected_old_state=ProcessingState.NAME
        ):
            logger.warning(
                f"Job {self.job.id} was no longer processing; outcome not recorded"
            )
            return None
        logger.info(f"Job {self.job.id} completed successfully")
        self._apply(completed_state)
        notify_filters(self.filters, "on_completed", self.job, completed_state)
        return completed_state

    def fail(self, error: BaseException, details: str = "") -> Optional[BaseState]:
        """Elects retry or failed for ``error`` and writes it to the store."""
        now = self.clock()
        failed_state = FailedState(
            exception_type=type(error).__name__,
            exception_message=str(error) or type(error).__name__,
            exception_details=details,
            retryable=getattr(error, "retryable", True),
            created_at=now,
        )

        elect_state_context = ElectStateContext(
            job=self.job, candidate_state=failed_state, now=now
        )
        for f in self.filters:
            f.on_state_election(elect_state_context)
        final_state = elect_state_context.candidate_state

        if not self.storage.set_job_state(
            self.job.id, final_state, expected_old_state=ProcessingState.NAME
        ):
            logger.warning(
                f"Job {self.job.id} was no longer processing; outcome not recorded"
            )
            return None

        if isinstance(final_state, RetryState):
            logger.warning(
                f"Scheduled retry {final_state.retry_count}/{self.job.max_retries} "
                f"for job {self.job.id} at {final_state.retry_at.isoformat()}"
            )
        else:
            logger.error(
                f"Job {self.job.id} failed permanently: {failed_state.exception_message}"
            )
        self._apply(final_state)
        notify_filters(self.filters, "on_failed", self.job, error, final_state)
        return final_state

    def _apply(self, state: BaseState) -> None:
        # Keeps the in-hand job in step with what the store recorded.
        for key, value in state_column_values(state).items():
            setattr(self.job, key, value)
