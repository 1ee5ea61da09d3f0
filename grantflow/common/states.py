# grantflow/common/states.py

from datetime import datetime, UTC
from typing import Dict, Any, Optional


class BaseState:
    NAME = "base"

    def __init__(self, reason: Optional[str] = None, created_at: datetime = None):
        self.reason = reason
        self.created_at = created_at or datetime.now(UTC)

    @property
    def name(self) -> str:
        return self.NAME

    def serialize_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.reason:
            data["reason"] = self.reason
        return data


class PendingState(BaseState):
    NAME = "pending"


class ProcessingState(BaseState):
    NAME = "processing"

    def __init__(self, server_id: str, worker_id: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.server_id = server_id
        self.worker_id = worker_id

    def serialize_data(self) -> Dict[str, Any]:
        data = super().serialize_data()
        data.update({"server_id": self.server_id, "worker_id": self.worker_id})
        return data


class CompletedState(BaseState):
    NAME = "completed"

    def __init__(self, duration_seconds: Optional[float] = None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.duration_seconds = duration_seconds

    def serialize_data(self) -> Dict[str, Any]:
        data = super().serialize_data()
        if self.duration_seconds is not None:
            data["duration_seconds"] = self.duration_seconds
        return data


class FailedState(BaseState):
    NAME = "failed"

    def __init__(
        self,
        exception_type: str,
        exception_message: str,
        exception_details: str = "",
        retryable: bool = True,
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.exception_type = exception_type
        self.exception_message = exception_message
        self.exception_details = exception_details
        self.retryable = retryable

    def serialize_data(self) -> Dict[str, Any]:
        data = super().serialize_data()
        data.update(
            {
                "exception_type": self.exception_type,
                "exception_message": self.exception_message,
                "exception_details": self.exception_details,
            }
        )
        return data


class RetryState(BaseState):
    """Failed attempt that re-enters the pool once ``retry_at`` has elapsed."""

    NAME = "retry"

    def __init__(
        self,
        retry_at: datetime,
        retry_count: int,
        exception_message: str,
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.retry_at = retry_at
        self.retry_count = retry_count
        self.exception_message = exception_message

    def serialize_data(self) -> Dict[str, Any]:
        data = super().serialize_data()
        data.update(
            {
                "retry_at": self.retry_at.isoformat(),
                "retry_count": self.retry_count,
                "exception_message": self.exception_message,
            }
        )
        return data


ALL_STATES = [
    PendingState.NAME,
    ProcessingState.NAME,
    CompletedState.NAME,
    FailedState.NAME,
    RetryState.NAME,
]

# States the claim query may pick up once scheduled_at has elapsed.
ELIGIBLE_STATES = (PendingState.NAME, RetryState.NAME)

TERMINAL_STATES = (CompletedState.NAME, FailedState.NAME)

ALLOWED_TRANSITIONS = {
    PendingState.NAME: {ProcessingState.NAME, FailedState.NAME},
    RetryState.NAME: {ProcessingState.NAME},
    ProcessingState.NAME: {CompletedState.NAME, RetryState.NAME, FailedState.NAME},
    CompletedState.NAME: set(),
    FailedState.NAME: set(),
}


def can_transition(old_state: str, new_state: str) -> bool:
    return new_state in ALLOWED_TRANSITIONS.get(old_state, set())
