# grantflow/server/engine.py
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, UTC
from threading import Event, RLock, Thread
from typing import Any, Callable, Dict, List, Optional, Set

from grantflow.common.exceptions import ConfigurationError, JobTimeoutError, StoreError
from grantflow.common.job import Job
from grantflow.common.states import FailedState, PendingState
from grantflow.config import EngineSettings
from grantflow.filters.base import JobFilter, notify_filters
from grantflow.filters.builtin import RetryFilter
from grantflow.storage.base import JobStorage
from .processor import JobProcessor
from .registry import HandlerRegistry, JobHandler

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"
STUCK_JOB_MESSAGE = "Job processing timed out"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _log_worker_error(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Job worker crashed", exc_info=error)


class JobQueueEngine:
    """Polls the job store, claims eligible jobs and runs them on a worker pool.

    Every coordination decision (who owns a job, when it may run again) is a
    conditional update against the store, so several engines may share one
    store. One engine owns one poll thread and ``max_workers`` handler threads
    and never claims more jobs than it has idle workers.
    """

    def __init__(
        self,
        storage: JobStorage,
        registry: Optional[HandlerRegistry] = None,
        settings: Optional[EngineSettings] = None,
        filters: Optional[List[JobFilter]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.registry = registry or HandlerRegistry()
        self.settings = settings or EngineSettings()
        self.filters = (
            filters if filters is not None else [RetryFilter(self.settings.retry_delays)]
        )
        self.clock = clock or (lambda: datetime.now(UTC))
        self.server_id = f"server:{uuid.uuid4()}"

        self._lock = RLock()
        self._wakeup = Event()
        self._stop_event: Optional[Event] = None
        self._thread: Optional[Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Set[str] = set()
        self._running = False
        self._last_poll_at: Optional[datetime] = None

    # --- Handlers ---

    def register_handler(
        self, job_type: str, handler: JobHandler, timeout_seconds: Optional[float] = None
    ) -> None:
        self.registry.register(job_type, handler, timeout_seconds=timeout_seconds)

    # --- Producing work ---

    def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        if not job_type or not isinstance(job_type, str):
            raise ValueError("job_type must be a non-empty string")
        if max_retries is None:
            max_retries = self.settings.default_max_retries
        if not _is_int(max_retries) or max_retries < 0:
            raise ValueError("max_retries must be a non-negative integer")
        if priority is None:
            priority = self.settings.default_priority
        if not _is_int(priority):
            raise ValueError("priority must be an integer")
        if scheduled_at is not None:
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=UTC)
            else:
                scheduled_at = scheduled_at.astimezone(UTC)

        now = self.clock()
        job = Job(
            job_type=job_type,
            payload=dict(payload or {}),
            priority=priority,
            scheduled_at=scheduled_at or now,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        try:
            job_id = self.storage.enqueue(job)
        except StoreError:
            logger.error(f"Failed to enqueue job of type {job_type}", exc_info=True)
            raise

        logger.info(
            f"Enqueued job {job_id} ({job_type}) priority={priority} "
            f"scheduled_at={job.scheduled_at.isoformat()}"
        )
        notify_filters(self.filters, "on_enqueued", job)
        self._wakeup.set()
        return job_id

    # --- Lifecycle ---

    def start(self) -> None:
        with self._lock:
            if self._running:
                logger.warning("Job queue processing is already running")
                return

            missing = self.registry.missing(self.settings.required_job_types)
            if missing:
                raise ConfigurationError(
                    f"No handlers registered for job types: {', '.join(missing)}"
                )

            self._running = True
            self._stop_event = Event()
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.max_workers,
                thread_name_prefix="grantflow-worker",
            )
            self._thread = Thread(
                target=self._run,
                args=(self._stop_event, self._executor),
                name=f"grantflow-poller-{self.server_id[-8:]}",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            f"Started job queue processing on {self.server_id} "
            f"(interval={self.settings.poll_interval}s, workers={self.settings.max_workers})"
        )

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            if not self._running:
                logger.warning("Job queue processing is not running")
                return

            self._running = False
            self._stop_event.set()
            self._wakeup.set()
            thread, executor = self._thread, self._executor
            self._thread = None
            self._executor = None

        thread.join()
        executor.shutdown(wait=wait)
        logger.info(f"Stopped job queue processing on {self.server_id}")

    def is_running(self) -> bool:
        return self._running

    def _run(self, stop_event: Event, executor: ThreadPoolExecutor) -> None:
        while not stop_event.is_set():
            self._wakeup.clear()
            try:
                self.poll_once(executor)
            except Exception:
                # The loop outlives any single bad cycle.
                logger.exception("Unexpected error in job poll cycle")
            self._wakeup.wait(self.settings.poll_interval)

    # --- Poll cycle ---

    def poll_once(self, executor: Optional[ThreadPoolExecutor] = None) -> List[str]:
        """Claims one batch and hands it to ``executor`` (or runs it inline).

        Store failures are logged and end the cycle; jobs stay as they were
        and the next cycle tries again.
        """
        try:
            if self.settings.stuck_job_timeout is not None:
                self.recover_stuck_jobs()

            batch_size = self.settings.batch_size
            if executor is not None:
                with self._lock:
                    idle = self.settings.max_workers - len(self._in_flight)
                batch_size = min(batch_size, idle)
            if batch_size <= 0:
                return []

            jobs = self.storage.claim_batch(
                batch_size,
                now=self.clock(),
                server_id=self.server_id,
                worker_id=f"worker:{uuid.uuid4()}",
            )
        except StoreError:
            logger.error("Error processing job batch", exc_info=True)
            return []
        finally:
            self._last_poll_at = self.clock()

        if jobs:
            logger.debug(f"Claimed {len(jobs)} job(s): {[j.id for j in jobs]}")
        for job in jobs:
            with self._lock:
                self._in_flight.add(job.id)
            if executor is None:
                self._process(job)
            else:
                future = executor.submit(self._process, job)
                future.add_done_callback(_log_worker_error)
        return [job.id for job in jobs]

    def run_once(self) -> List[str]:
        """Claims and processes one batch synchronously in the calling thread."""
        return self.poll_once(executor=None)

    def _processor_for(self, job: Job) -> JobProcessor:
        return JobProcessor(
            job,
            self.storage,
            self.registry,
            filters=self.filters,
            default_timeout=self.settings.default_timeout_seconds,
            clock=self.clock,
        )

    def _process(self, job: Job) -> None:
        try:
            self._processor_for(job).process()
        except StoreError:
            # The job stays in processing; stuck-job recovery picks it up.
            logger.error(f"Could not record outcome of job {job.id}", exc_info=True)
        except Exception:
            logger.exception(f"Unexpected error while processing job {job.id}")
        finally:
            with self._lock:
                self._in_flight.discard(job.id)

    def recover_stuck_jobs(
        self, max_age_seconds: Optional[float] = None, limit: int = 100
    ) -> List[str]:
        """Fails over jobs left in processing by a worker that went away.

        Each one counts as a failed attempt and is retried or failed exactly as
        if its handler had raised. Jobs this engine is still running are left
        alone.
        """
        if max_age_seconds is None:
            max_age_seconds = self.settings.stuck_job_timeout
        if max_age_seconds is None:
            raise ValueError("max_age_seconds is required when stuck_job_timeout is unset")

        cutoff = self.clock() - timedelta(seconds=max_age_seconds)
        recovered: List[str] = []
        for job in self.storage.find_stuck_jobs(cutoff, limit=limit):
            with self._lock:
                if job.id in self._in_flight:
                    continue
            state = self._processor_for(job).fail(JobTimeoutError(STUCK_JOB_MESSAGE))
            if state is not None:
                recovered.append(job.id)
        if recovered:
            logger.warning(f"Recovered {len(recovered)} stuck job(s): {recovered}")
        return recovered

    # --- Queries and management ---

    def get_job_by_id(self, job_id: str) -> Optional[Job]:
        return self.storage.get_job_data(job_id)

    def cancel_job(self, job_id: str) -> bool:
        """Prevents a pending job from running. Jobs already claimed are untouched."""
        cancelled_state = FailedState(
            exception_type="Cancelled",
            exception_message=CANCELLED_MESSAGE,
            retryable=False,
            reason=CANCELLED_MESSAGE,
            created_at=self.clock(),
        )
        cancelled = self.storage.set_job_state(
            job_id, cancelled_state, expected_old_state=PendingState.NAME
        )
        if cancelled:
            logger.info(f"Cancelled job {job_id}")
        else:
            logger.info(f"Job {job_id} could not be cancelled (not pending)")
        return cancelled

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        since = self.clock() - timedelta(hours=self.settings.stats_window_hours)
        return self.storage.get_statistics(since)

    def health_check(self) -> Dict[str, Any]:
        try:
            store_ok = self.storage.ping()
        except StoreError:
            store_ok = False
        thread = self._thread
        engine_ok = self._running and thread is not None and thread.is_alive()
        return {
            "healthy": store_ok and engine_ok,
            "store": store_ok,
            "engine": engine_ok,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
        }
