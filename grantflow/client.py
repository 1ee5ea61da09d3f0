# grantflow/client.py
from datetime import datetime
from typing import Any, Optional, List, Dict

from .common.job import Job
from .common.states import ALL_STATES
from .config import EngineSettings
from .server.engine import JobQueueEngine
from .server.registry import HandlerRegistry
from .storage.base import JobStorage


class Client:
    """
    Facade over a job queue engine for producers and for status/monitoring
    callers (HTTP layer, dashboard, scripts).
    """

    def __init__(
        self,
        storage: Optional[JobStorage] = None,
        engine: Optional[JobQueueEngine] = None,
        registry: Optional[HandlerRegistry] = None,
        settings: Optional[EngineSettings] = None,
        scheduler=None,
    ):
        if engine is None:
            if storage is None:
                raise ValueError("storage or engine is required")
            engine = JobQueueEngine(storage, registry=registry, settings=settings)
        self.engine = engine
        self.storage = engine.storage
        self.scheduler = scheduler

    def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        return self.engine.enqueue(
            job_type,
            payload,
            priority=priority,
            scheduled_at=scheduled_at,
            max_retries=max_retries,
        )

    def cancel(self, job_id: str) -> bool:
        return self.engine.cancel_job(job_id)

    # --- Status / observability ---

    def get_job_details(self, job_id: str) -> Optional[Job]:
        return self.engine.get_job_by_id(job_id)

    def get_jobs_by_state(
        self, state_name: str, page: int = 1, page_size: int = 20
    ) -> List[Job]:
        start = (max(page, 1) - 1) * page_size
        return self.storage.get_jobs_by_state(state_name, start, page_size)

    def get_state_counts(self) -> Dict[str, int]:
        return {
            state: self.storage.get_state_job_count(state) for state in ALL_STATES
        }

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.engine.get_stats()

    def get_job_history(self, job_id: str) -> List[dict]:
        return self.storage.get_job_history(job_id)

    def health(self) -> Dict[str, Any]:
        return self.engine.health_check()

    def get_scheduler_status(self) -> Optional[Dict[str, Any]]:
        if self.scheduler is None:
            return None
        return self.scheduler.get_status()
