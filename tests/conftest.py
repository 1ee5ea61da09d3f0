import time
from datetime import UTC, datetime, timedelta

import pytest

from grantflow.config import EngineSettings
from grantflow.server.engine import JobQueueEngine
from grantflow.storage.memory_storage import MemoryStorage


class FakeClock:
    """Manually advanced clock so retry delays can be crossed instantly."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def engine(memory_storage, clock):
    return JobQueueEngine(memory_storage, settings=EngineSettings(), clock=clock)


@pytest.fixture
def wait_until():
    def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait_until
