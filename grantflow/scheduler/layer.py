# grantflow/scheduler/layer.py
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import (
    CLEANUP_JOB_TYPE,
    CRAWL_JOB_TYPE,
    DEADLINE_JOB_TYPE,
    DISCOVERY_JOB_TYPE,
    MANUAL_PRIORITY,
    SchedulerConfig,
)
from .triggers import Enqueuer, Trigger, TriggerHandle, run_sweep
from .work_source import WorkSource

logger = logging.getLogger(__name__)


def crawl_payload(source: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "sourceId": source["id"],
        "sourceName": source.get("name"),
        "sourceUrl": source.get("url"),
        "manual": False,
    }


def build_default_triggers(config: SchedulerConfig, work_source: WorkSource) -> List[Trigger]:
    """Builds the enabled built-in triggers for ``config``."""

    def crawl_units(schedule_type: str):
        return lambda: work_source.get_active_sources_for_schedule(schedule_type)

    candidates = [
        (
            config.daily_crawl,
            "daily_crawl",
            CRAWL_JOB_TYPE,
            "daily",
            crawl_units("daily"),
            crawl_payload,
        ),
        (
            config.weekly_crawl,
            "weekly_crawl",
            CRAWL_JOB_TYPE,
            "weekly",
            crawl_units("weekly"),
            crawl_payload,
        ),
        (
            config.monthly_crawl,
            "monthly_crawl",
            CRAWL_JOB_TYPE,
            "monthly",
            crawl_units("monthly"),
            crawl_payload,
        ),
        (
            config.grant_discovery,
            "grant_discovery",
            DISCOVERY_JOB_TYPE,
            "discovery",
            lambda: [
                {"sourceUrl": url, "regions": list(config.discovery_regions)}
                for url in config.discovery_sources
            ],
            dict,
        ),
        (
            config.deadline_check,
            "deadline_check",
            DEADLINE_JOB_TYPE,
            "deadline",
            lambda: work_source.get_upcoming_deadlines(config.deadline_warning_days),
            dict,
        ),
        (
            config.data_cleanup,
            "data_cleanup",
            CLEANUP_JOB_TYPE,
            "cleanup",
            lambda: config.cleanup_targets,
            dict,
        ),
    ]

    triggers = []
    for trigger_config, name, job_type, schedule_type, units, build_payload in candidates:
        if not trigger_config.enabled:
            continue
        triggers.append(
            Trigger(
                name=name,
                cron=trigger_config.cron,
                job_type=job_type,
                schedule_type=schedule_type,
                priority=trigger_config.priority,
                units=units,
                build_payload=build_payload,
                max_retries=config.max_retries,
            )
        )
    return triggers


@dataclass
class SchedulerState:
    """Timers registered by one ``start()``; handed back to ``stop()``."""

    is_running: bool = False
    handles: List[TriggerHandle] = field(default_factory=list)
    started_at: Optional[datetime] = None

    @property
    def active_trigger_count(self) -> int:
        return sum(1 for handle in self.handles if handle.is_active())


class ScheduleTriggerLayer:
    """Periodically turns eligible work into jobs on a queue.

    The layer only produces work: stopping it never touches jobs that are
    already queued or running. Configuration changes restart the whole trigger
    set rather than patching individual timers.
    """

    def __init__(
        self,
        enqueuer: Enqueuer,
        work_source: WorkSource,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.enqueuer = enqueuer
        self.work_source = work_source
        self._config = config or SchedulerConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._custom_triggers: Dict[str, Trigger] = {}
        self._state = SchedulerState()
        self._lock = RLock()

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def state(self) -> SchedulerState:
        return self._state

    def triggers(self) -> List[Trigger]:
        with self._lock:
            return build_default_triggers(self._config, self.work_source) + list(
                self._custom_triggers.values()
            )

    def start(self) -> SchedulerState:
        with self._lock:
            if self._state.is_running:
                logger.warning("Schedule trigger layer is already running")
                return self._state

            handles = []
            for trigger in self.triggers():
                handles.append(TriggerHandle(trigger, self._sweep, self._clock).start())
                logger.info(
                    f"Trigger {trigger.name} scheduled: {trigger.cron} "
                    f"({trigger.job_type}, priority {trigger.priority})"
                )
            self._state = SchedulerState(
                is_running=True, handles=handles, started_at=self._clock()
            )
            logger.info(f"Schedule trigger layer started with {len(handles)} trigger(s)")
            return self._state

    def stop(self) -> None:
        with self._lock:
            if not self._state.is_running:
                logger.warning("Schedule trigger layer is not running")
                return
            state, self._state = self._state, SchedulerState()

        for handle in state.handles:
            handle.cancel()
        logger.info("Schedule trigger layer stopped")

    def is_running(self) -> bool:
        return self._state.is_running

    def update_config(
        self, config: Optional[SchedulerConfig] = None, **partial: Any
    ) -> SchedulerConfig:
        with self._lock:
            new_config = config if config is not None else self._config.merge(partial)
            was_running = self._state.is_running
            if was_running:
                self.stop()
            self._config = new_config
            if was_running:
                self.start()
            logger.info("Schedule trigger layer configuration updated")
            return new_config

    def add_trigger(self, trigger: Trigger) -> None:
        with self._lock:
            self._custom_triggers[trigger.name] = trigger
            if self._state.is_running:
                self.stop()
                self.start()

    def remove_trigger(self, name: str) -> bool:
        with self._lock:
            removed = self._custom_triggers.pop(name, None) is not None
            if removed and self._state.is_running:
                self.stop()
                self.start()
            return removed

    def get_status(self) -> Dict[str, Any]:
        state = self._state
        return {
            "is_running": state.is_running,
            "active_trigger_count": state.active_trigger_count,
            "triggers": [handle.describe() for handle in state.handles],
        }

    def fire(self, name: str) -> int:
        """Runs one trigger's sweep immediately, regardless of its schedule."""
        for trigger in self.triggers():
            if trigger.name == name:
                return self._sweep(trigger)
        raise KeyError(f"Unknown trigger: {name}")

    def enqueue_manual(self, source: Mapping[str, Any], triggered_by: Optional[str] = None) -> str:
        """Queues an on-demand crawl of one source ahead of scheduled work."""
        payload = crawl_payload(source)
        payload.update({"manual": True, "scheduleType": "manual"})
        if triggered_by:
            payload["triggeredBy"] = triggered_by
        return self.enqueuer.enqueue(
            CRAWL_JOB_TYPE,
            payload,
            priority=MANUAL_PRIORITY,
            max_retries=self._config.max_retries,
        )

    def _sweep(self, trigger: Trigger) -> int:
        return run_sweep(trigger, self.enqueuer)
