import logging
from abc import ABC
from typing import Any, Iterable

from grantflow.common.job import Job
from grantflow.common.states import BaseState
from grantflow.server.context import ElectStateContext

logger = logging.getLogger(__name__)


class JobFilter(ABC):
    """Hooks into a job's lifecycle.

    ``on_state_election`` runs while the outcome of a failed attempt is being
    decided and may replace ``candidate_state`` on the context, e.g. turning a
    failure into a delayed retry. The ``on_*`` listeners run after the fact and
    only observe; an exception raised by a listener is logged and ignored.
    Filters run in registration order.
    """

    def on_state_election(self, elect_state_context: ElectStateContext) -> None:
        pass

    def on_enqueued(self, job: Job) -> None:
        pass

    def on_completed(self, job: Job, state: BaseState) -> None:
        pass

    def on_failed(self, job: Job, error: BaseException, state: BaseState) -> None:
        """Called for every failed attempt; ``state`` is the retry or failed state recorded."""
        pass


def notify_filters(filters: Iterable[JobFilter], hook: str, *args: Any) -> None:
    for f in filters:
        try:
            listener = getattr(f, hook, None)
            if listener is not None:
                listener(*args)
        except Exception:
            logger.exception(f"{type(f).__name__}.{hook} raised; ignoring")
