# grantflow/execution/performer.py
import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Optional

from grantflow.common.exceptions import JobTimeoutError
from grantflow.common.job import Job
from grantflow.server.registry import JobHandler


async def _await_with_deadline(awaitable, timeout: Optional[float]) -> Any:
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)


def _run_sync(handler: JobHandler, job: Job, timeout: Optional[float]) -> Any:
    result = handler(job)
    if inspect.isawaitable(result):
        return asyncio.run(_await_with_deadline(result, timeout))
    return result


def perform_job(handler: JobHandler, job: Job, timeout: Optional[float] = None) -> Any:
    """Runs ``handler`` against ``job``, sync or async, within ``timeout`` seconds.

    A handler that overruns its deadline is abandoned (it cannot be
    interrupted) and the attempt fails with JobTimeoutError.
    """
    if timeout is None:
        return _run_sync(handler, job, None)

    if inspect.iscoroutinefunction(handler):
        try:
            return asyncio.run(_await_with_deadline(handler(job), timeout))
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(
                f"Job {job.id} ({job.job_type}) exceeded its {timeout}s deadline"
            ) from e

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="grantflow-deadline")
    future = executor.submit(_run_sync, handler, job, timeout)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        raise JobTimeoutError(
            f"Job {job.id} ({job.job_type}) exceeded its {timeout}s deadline"
        ) from e
    finally:
        executor.shutdown(wait=False)
