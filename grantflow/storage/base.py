# grantflow/storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Tuple

from grantflow.common.job import Job
from grantflow.common.states import (
    BaseState,
    CompletedState,
    FailedState,
    ProcessingState,
    RetryState,
)


class JobStorage(ABC):
    @abstractmethod
    def enqueue(self, job: Job) -> str: ...

    @abstractmethod
    def claim_batch(
        self,
        batch_size: int,
        now: Optional[datetime] = None,
        server_id: str = "",
        worker_id: str = "",
    ) -> List[Job]:
        """Atomically move up to ``batch_size`` eligible jobs to processing.

        Eligible means status pending or retry with ``scheduled_at <= now``.
        Jobs come back ordered by priority (highest first), then by
        ``scheduled_at`` (oldest first). A job is handed to one claimant only.
        """

    @abstractmethod
    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool: ...

    @abstractmethod
    def get_job_data(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def get_jobs_by_state(self, state_name: str, start: int, count: int) -> List[Job]: ...

    @abstractmethod
    def get_state_job_count(self, state_name: str) -> int: ...

    @abstractmethod
    def get_statistics(self, since: datetime) -> Dict[str, Dict[str, Any]]: ...

    @abstractmethod
    def get_job_history(self, job_id: str) -> List[dict]: ...

    @abstractmethod
    def find_stuck_jobs(self, started_before: datetime, limit: int = 100) -> List[Job]: ...

    @abstractmethod
    def ping(self) -> bool: ...


def state_column_values(state: BaseState) -> Dict[str, Any]:
    """Column updates implied by moving a job into ``state``."""
    values: Dict[str, Any] = {"status": state.name, "updated_at": state.created_at}
    if isinstance(state, ProcessingState):
        values["started_at"] = state.created_at
    elif isinstance(state, CompletedState):
        values["completed_at"] = state.created_at
    elif isinstance(state, RetryState):
        values["retry_count"] = state.retry_count
        values["scheduled_at"] = state.retry_at
        values["error_message"] = state.exception_message
    elif isinstance(state, FailedState):
        values["error_message"] = state.exception_message
        values["completed_at"] = state.created_at
    return values


def summarize_statistics(
    rows: Iterable[Tuple[str, Optional[datetime], Optional[datetime]]],
) -> Dict[str, Dict[str, Any]]:
    """Fold ``(status, started_at, completed_at)`` rows into per-status stats."""
    counts: Dict[str, int] = {}
    durations: Dict[str, List[float]] = {}
    for status, started_at, completed_at in rows:
        counts[status] = counts.get(status, 0) + 1
        if started_at is not None and completed_at is not None:
            durations.setdefault(status, []).append(
                (completed_at - started_at).total_seconds()
            )

    stats: Dict[str, Dict[str, Any]] = {}
    for status, count in counts.items():
        samples = durations.get(status)
        stats[status] = {
            "count": count,
            "avg_duration_seconds": sum(samples) / len(samples) if samples else None,
        }
    return stats
