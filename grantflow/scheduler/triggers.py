# grantflow/scheduler/triggers.py
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from threading import Event, Thread, current_thread
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol

from cronsim import CronSim

from .config import validate_cron

logger = logging.getLogger(__name__)

SCHEDULER_TRIGGERED_BY = "scheduler"


class Enqueuer(Protocol):
    def enqueue(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        max_retries: Optional[int] = None,
    ) -> str: ...


def _copy_unit(unit: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(unit)


@dataclass(frozen=True)
class Trigger:
    """A cron rule that turns the currently eligible work units into jobs."""

    name: str
    cron: str
    job_type: str
    schedule_type: str
    priority: int
    units: Callable[[], Iterable[Mapping[str, Any]]]
    build_payload: Callable[[Mapping[str, Any]], Dict[str, Any]] = _copy_unit
    max_retries: Optional[int] = None

    def __post_init__(self):
        validate_cron(self.cron)

    def payload_for(self, unit: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self.build_payload(unit)
        payload["scheduleType"] = self.schedule_type
        payload.setdefault("triggeredBy", SCHEDULER_TRIGGERED_BY)
        return payload


def next_fire_time(cron: str, after: datetime) -> datetime:
    return next(CronSim(cron, after))


def run_sweep(trigger: Trigger, enqueuer: Enqueuer) -> int:
    """Enqueues one job per eligible unit; returns how many were enqueued.

    A failing eligibility query aborts the sweep. A failing unit is logged and
    skipped; jobs already enqueued by this sweep stay enqueued.
    """
    try:
        units = list(trigger.units())
    except Exception:
        logger.exception(
            f"Trigger {trigger.name}: eligible-work query failed, sweep aborted"
        )
        return 0

    enqueued = 0
    for unit in units:
        try:
            enqueuer.enqueue(
                trigger.job_type,
                trigger.payload_for(unit),
                priority=trigger.priority,
                max_retries=trigger.max_retries,
            )
            enqueued += 1
        except Exception:
            logger.exception(f"Trigger {trigger.name}: failed to enqueue unit {unit!r}")

    logger.info(
        f"Trigger {trigger.name} enqueued {enqueued}/{len(units)} "
        f"{trigger.job_type} job(s) at priority {trigger.priority}"
    )
    return enqueued


class TriggerHandle:
    """Timer thread that fires one trigger on its cron schedule until cancelled."""

    def __init__(
        self,
        trigger: Trigger,
        fire: Callable[[Trigger], Any],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.trigger = trigger
        self._fire = fire
        self._clock = clock
        self._cancelled = Event()
        self._thread: Optional[Thread] = None
        self.next_fire_at: Optional[datetime] = None
        self.last_fired_at: Optional[datetime] = None
        self.fire_count = 0

    def start(self) -> "TriggerHandle":
        self._thread = Thread(
            target=self._run, name=f"grantflow-trigger-{self.trigger.name}", daemon=True
        )
        self._thread.start()
        return self

    def cancel(self, timeout: Optional[float] = 5.0) -> None:
        self._cancelled.set()
        thread = self._thread
        if thread is not None and thread is not current_thread():
            thread.join(timeout)

    def is_active(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._cancelled.is_set()
        )

    def _run(self) -> None:
        after = self._clock()
        while not self._cancelled.is_set():
            self.next_fire_at = next_fire_time(self.trigger.cron, max(after, self._clock()))
            delay = (self.next_fire_at - self._clock()).total_seconds()
            if delay > 0 and self._cancelled.wait(delay):
                break
            if self._cancelled.is_set():
                break

            self.last_fired_at = self.next_fire_at
            logger.info(f"Trigger {self.trigger.name} fired")
            try:
                self._fire(self.trigger)
            except Exception:
                logger.exception(f"Trigger {self.trigger.name} sweep crashed")
            self.fire_count += 1
            after = self.next_fire_at

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.trigger.name,
            "cron": self.trigger.cron,
            "job_type": self.trigger.job_type,
            "priority": self.trigger.priority,
            "active": self.is_active(),
            "next_fire_at": self.next_fire_at.isoformat() if self.next_fire_at else None,
            "last_fired_at": self.last_fired_at.isoformat() if self.last_fired_at else None,
            "fire_count": self.fire_count,
        }
