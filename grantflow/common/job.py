# grantflow/common/job.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional, Dict, Any

from grantflow.common.states import PendingState


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Job:
    """
    Represents a unit of work tracked by the queue.

    The queue treats ``job_type`` and ``payload`` as opaque: the type selects a
    registered handler and the payload is handed to it verbatim. Everything
    else is bookkeeping owned by the engine.
    """

    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    status: str = PendingState.NAME
    priority: int = 5
    scheduled_at: datetime = field(default_factory=utcnow)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    retry_count: int = 0
    max_retries: int = 3

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            data[key] = value.isoformat() if isinstance(value, datetime) else value
        return data
