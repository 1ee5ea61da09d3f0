# grantflow/scheduler/config.py
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, UTC
from typing import Any, Dict, Mapping, Tuple

from cronsim import CronSim, CronSimError

from grantflow.common.exceptions import ConfigurationError

MANUAL_PRIORITY = 9
HIGH_PRIORITY = 7
NORMAL_PRIORITY = 5
LOW_PRIORITY = 1

CRAWL_JOB_TYPE = "crawl_grant_source"
DISCOVERY_JOB_TYPE = "discover_grants"
DEADLINE_JOB_TYPE = "send_deadline_notification"
CLEANUP_JOB_TYPE = "cleanup_old_data"


def validate_cron(expression: str) -> str:
    try:
        CronSim(expression, datetime.now(UTC))
    except CronSimError as e:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}") from e
    return expression


@dataclass(frozen=True)
class TriggerConfig:
    cron: str
    priority: int = NORMAL_PRIORITY
    enabled: bool = True

    def __post_init__(self):
        validate_cron(self.cron)


@dataclass(frozen=True)
class SchedulerConfig:
    """Schedules for the built-in triggers. All cron expressions are in UTC."""

    daily_crawl: TriggerConfig = TriggerConfig("0 2 * * *", HIGH_PRIORITY)
    weekly_crawl: TriggerConfig = TriggerConfig("0 3 * * 1", NORMAL_PRIORITY)
    monthly_crawl: TriggerConfig = TriggerConfig("0 4 1 * *", NORMAL_PRIORITY)
    grant_discovery: TriggerConfig = TriggerConfig("0 6 * * *", 6)
    deadline_check: TriggerConfig = TriggerConfig("0 9 * * *", 6)
    data_cleanup: TriggerConfig = TriggerConfig("0 3 * * 0", LOW_PRIORITY)

    discovery_sources: Tuple[str, ...] = ()
    discovery_regions: Tuple[str, ...] = ("Ireland", "EU")
    deadline_warning_days: Tuple[int, ...] = (30, 14, 7, 3, 1)
    cleanup_targets: Tuple[Dict[str, Any], ...] = field(
        default_factory=lambda: ({"dataType": "job_queue", "olderThanDays": 30},)
    )
    max_retries: int = 3

    def merge(self, partial: Mapping[str, Any]) -> "SchedulerConfig":
        """Returns a copy with ``partial`` applied.

        Trigger entries may be given as TriggerConfig instances or as mappings
        of the fields to change, e.g. ``{"daily_crawl": {"cron": "0 5 * * *"}}``.
        """
        known = {f.name: f for f in fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in partial.items():
            if key not in known:
                raise ConfigurationError(f"Unknown scheduler setting: {key}")
            current = getattr(self, key)
            if isinstance(current, TriggerConfig) and isinstance(value, Mapping):
                value = replace(current, **value)
            elif isinstance(current, tuple) and isinstance(value, list):
                value = tuple(value)
            changes[key] = value
        return replace(self, **changes)

    def trigger_configs(self) -> Dict[str, TriggerConfig]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if isinstance(getattr(self, f.name), TriggerConfig)
        }
