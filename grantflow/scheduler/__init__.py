from .config import (
    CLEANUP_JOB_TYPE,
    CRAWL_JOB_TYPE,
    DEADLINE_JOB_TYPE,
    DISCOVERY_JOB_TYPE,
    MANUAL_PRIORITY,
    SchedulerConfig,
    TriggerConfig,
)
from .layer import ScheduleTriggerLayer, SchedulerState, build_default_triggers
from .triggers import Trigger, TriggerHandle, next_fire_time, run_sweep
from .work_source import StaticWorkSource, WorkSource

__all__ = [
    "CLEANUP_JOB_TYPE",
    "CRAWL_JOB_TYPE",
    "DEADLINE_JOB_TYPE",
    "DISCOVERY_JOB_TYPE",
    "MANUAL_PRIORITY",
    "ScheduleTriggerLayer",
    "SchedulerConfig",
    "SchedulerState",
    "StaticWorkSource",
    "Trigger",
    "TriggerConfig",
    "TriggerHandle",
    "WorkSource",
    "build_default_triggers",
    "next_fire_time",
    "run_sweep",
]
