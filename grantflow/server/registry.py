# grantflow/server/registry.py
import logging
from dataclasses import dataclass
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from grantflow.common.job import Job

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class HandlerRegistration:
    job_type: str
    handler: JobHandler
    timeout_seconds: Optional[float] = None


class HandlerRegistry:
    """Maps job-type strings to the handlers that process them.

    This is the seam where business modules (crawling, notifications,
    cleanup, ...) plug into the queue. The last registration for a type wins.
    """

    def __init__(self):
        self._handlers: Dict[str, HandlerRegistration] = {}
        self._lock = RLock()

    def register(
        self,
        job_type: str,
        handler: JobHandler,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        if not job_type:
            raise ValueError("job_type must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for {job_type!r} is not callable")

        with self._lock:
            replaced = job_type in self._handlers
            self._handlers[job_type] = HandlerRegistration(
                job_type, handler, timeout_seconds
            )
        if replaced:
            logger.warning(f"Replaced job handler for type: {job_type}")
        else:
            logger.info(f"Registered job handler for type: {job_type}")

    def handler(self, job_type: str, timeout_seconds: Optional[float] = None):
        """Decorator form of :meth:`register`."""

        def decorator(func: JobHandler) -> JobHandler:
            self.register(job_type, func, timeout_seconds=timeout_seconds)
            return func

        return decorator

    def unregister(self, job_type: str) -> bool:
        with self._lock:
            return self._handlers.pop(job_type, None) is not None

    def get(self, job_type: str) -> Optional[HandlerRegistration]:
        with self._lock:
            return self._handlers.get(job_type)

    def job_types(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    def missing(self, job_types: Iterable[str]) -> List[str]:
        with self._lock:
            return sorted({t for t in job_types if t not in self._handlers})

    def __contains__(self, job_type: str) -> bool:
        with self._lock:
            return job_type in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
