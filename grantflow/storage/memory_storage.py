# grantflow/storage/memory_storage.py
import copy
import logging
from datetime import datetime, UTC
from threading import RLock
from typing import Optional, List, Dict, Any

from grantflow.storage.base import JobStorage, state_column_values, summarize_statistics
from grantflow.common.job import Job
from grantflow.common.states import (
    BaseState,
    ELIGIBLE_STATES,
    PendingState,
    ProcessingState,
    can_transition,
)

logger = logging.getLogger(__name__)


class MemoryStorage(JobStorage):
    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._history: Dict[str, List[dict]] = {}
        self._lock = RLock()

    def _record_history(self, job_id: str, state: BaseState) -> None:
        self._history.setdefault(job_id, []).append(
            {
                "state": state.name,
                "timestamp": state.created_at.isoformat(),
                "data": state.serialize_data(),
            }
        )

    def enqueue(self, job: Job) -> str:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)
            self._record_history(job.id, PendingState(created_at=job.created_at))
        return job.id

    def claim_batch(
        self,
        batch_size: int,
        now: Optional[datetime] = None,
        server_id: str = "",
        worker_id: str = "",
    ) -> List[Job]:
        if batch_size <= 0:
            return []
        now = now or datetime.now(UTC)
        with self._lock:
            eligible = [
                job
                for job in self._jobs.values()
                if job.status in ELIGIBLE_STATES and job.scheduled_at <= now
            ]
            eligible.sort(key=lambda j: (-j.priority, j.scheduled_at, j.created_at))

            claimed = []
            for job in eligible[:batch_size]:
                processing_state = ProcessingState(server_id, worker_id, created_at=now)
                for key, value in state_column_values(processing_state).items():
                    setattr(job, key, value)
                self._record_history(job.id, processing_state)
                claimed.append(copy.deepcopy(job))
            return claimed

    def set_job_state(
        self, job_id: str, state: BaseState, expected_old_state: Optional[str] = None
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if expected_old_state and job.status != expected_old_state:
                return False
            if not can_transition(job.status, state.name):
                logger.warning(
                    f"Rejected transition {job.status} -> {state.name} for job {job_id}"
                )
                return False

            for key, value in state_column_values(state).items():
                setattr(job, key, value)
            self._record_history(job_id, state)
            return True

    def get_job_data(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def get_jobs_by_state(self, state_name: str, start: int, count: int) -> List[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.status == state_name]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return [copy.deepcopy(j) for j in jobs[start : start + count]]

    def get_state_job_count(self, state_name: str) -> int:
        with self._lock:
            return sum(1 for j in self._jobs.values() if j.status == state_name)

    def get_statistics(self, since: datetime) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            rows = [
                (j.status, j.started_at, j.completed_at)
                for j in self._jobs.values()
                if j.created_at > since
            ]
        return summarize_statistics(rows)

    def get_job_history(self, job_id: str) -> List[dict]:
        with self._lock:
            return copy.deepcopy(self._history.get(job_id, []))

    def find_stuck_jobs(self, started_before: datetime, limit: int = 100) -> List[Job]:
        with self._lock:
            stuck = [
                j
                for j in self._jobs.values()
                if j.status == ProcessingState.NAME
                and j.started_at is not None
                and j.started_at <= started_before
            ]
            stuck.sort(key=lambda j: j.started_at)
            return [copy.deepcopy(j) for j in stuck[:limit]]

    def ping(self) -> bool:
        return True
