"""Job routes."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from litestar import Controller, get, post
from litestar.exceptions import NotFoundException, ValidationException
from litestar.params import Parameter

from grantflow.client import Client
from grantflow.common.states import ALL_STATES, PendingState


class JobsController(Controller):
    path = "/jobs"

    @get()
    async def list_jobs(
        self,
        client: Client,
        status: str = Parameter(query="status", default=PendingState.NAME),
        page: int = Parameter(query="page", default=1, ge=1),
    ) -> List[Dict[str, Any]]:
        if status not in ALL_STATES:
            raise ValidationException(f"Unknown status: {status}")
        return [job.to_dict() for job in client.get_jobs_by_state(status, page=page)]

    @post()
    async def enqueue(self, client: Client, data: Dict[str, Any]) -> Dict[str, str]:
        job_type = data.get("job_type")
        if not job_type or not isinstance(job_type, str):
            raise ValidationException("job_type is required")
        payload: Optional[Dict[str, Any]] = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValidationException("payload must be an object")
        scheduled_at = data.get("scheduled_at")
        if scheduled_at is not None:
            try:
                scheduled_at = datetime.fromisoformat(scheduled_at)
            except (TypeError, ValueError):
                raise ValidationException("scheduled_at must be an ISO 8601 timestamp")
        try:
            job_id = client.enqueue(
                job_type,
                payload,
                priority=data.get("priority"),
                scheduled_at=scheduled_at,
                max_retries=data.get("max_retries"),
            )
        except ValueError as e:
            raise ValidationException(str(e)) from e
        return {"job_id": job_id}

    @get("/{job_id:str}")
    async def job_details(self, client: Client, job_id: str) -> Dict[str, Any]:
        job = client.get_job_details(job_id)
        if job is None:
            raise NotFoundException(f"Job {job_id} not found")
        return job.to_dict()

    @get("/{job_id:str}/history")
    async def job_history(self, client: Client, job_id: str) -> List[Dict[str, Any]]:
        if client.get_job_details(job_id) is None:
            raise NotFoundException(f"Job {job_id} not found")
        return client.get_job_history(job_id)

    @post("/{job_id:str}/cancel", status_code=200)
    async def cancel(self, client: Client, job_id: str) -> Dict[str, bool]:
        if client.get_job_details(job_id) is None:
            raise NotFoundException(f"Job {job_id} not found")
        return {"cancelled": client.cancel(job_id)}
