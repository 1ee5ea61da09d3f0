# grantflow/config.py
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from grantflow.common.exceptions import ConfigurationError
from grantflow.storage.base import JobStorage

ENV_PREFIX = "GRANTFLOW_"


@dataclass(frozen=True)
class EngineSettings:
    poll_interval: float = 5.0
    batch_size: int = 10
    max_workers: int = 4
    retry_delays: Tuple[int, ...] = (60, 300, 900)
    default_priority: int = 5
    default_max_retries: int = 3
    # None leaves handlers unbounded unless their registration sets a deadline.
    default_timeout_seconds: Optional[float] = None
    # None disables automatic recovery of jobs abandoned in processing.
    stuck_job_timeout: Optional[float] = None
    stats_window_hours: float = 24
    required_job_types: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if not self.retry_delays:
            raise ConfigurationError("retry_delays must not be empty")
        if any(d <= 0 for d in self.retry_delays):
            raise ConfigurationError("retry_delays must be positive")
        if list(self.retry_delays) != sorted(self.retry_delays):
            raise ConfigurationError("retry_delays must be non-decreasing")
        if self.default_max_retries < 0:
            raise ConfigurationError("default_max_retries must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = environ.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else None

        kwargs = {}
        try:
            if get("POLL_INTERVAL"):
                kwargs["poll_interval"] = float(get("POLL_INTERVAL"))
            if get("BATCH_SIZE"):
                kwargs["batch_size"] = int(get("BATCH_SIZE"))
            if get("MAX_WORKERS"):
                kwargs["max_workers"] = int(get("MAX_WORKERS"))
            if get("RETRY_DELAYS"):
                kwargs["retry_delays"] = tuple(
                    int(part) for part in get("RETRY_DELAYS").split(",") if part.strip()
                )
            if get("DEFAULT_PRIORITY"):
                kwargs["default_priority"] = int(get("DEFAULT_PRIORITY"))
            if get("DEFAULT_MAX_RETRIES"):
                kwargs["default_max_retries"] = int(get("DEFAULT_MAX_RETRIES"))
            if get("DEFAULT_TIMEOUT"):
                kwargs["default_timeout_seconds"] = float(get("DEFAULT_TIMEOUT"))
            if get("STUCK_JOB_TIMEOUT"):
                kwargs["stuck_job_timeout"] = float(get("STUCK_JOB_TIMEOUT"))
            if get("STATS_WINDOW_HOURS"):
                kwargs["stats_window_hours"] = float(get("STATS_WINDOW_HOURS"))
            if get("REQUIRED_JOB_TYPES"):
                kwargs["required_job_types"] = tuple(
                    t.strip() for t in get("REQUIRED_JOB_TYPES").split(",") if t.strip()
                )
        except ValueError as e:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}* setting: {e}") from e
        return cls(**kwargs)


class _GlobalConfig:
    def __init__(self):
        self.storage: Optional[JobStorage] = None

_GLOBAL_CONFIG = _GlobalConfig()

def configure(storage: JobStorage) -> None:
    _GLOBAL_CONFIG.storage = storage

def get_storage() -> JobStorage:
    if not _GLOBAL_CONFIG.storage:
        raise RuntimeError("grantflow has not been configured. Call grantflow.configure() first.")
    return _GLOBAL_CONFIG.storage
