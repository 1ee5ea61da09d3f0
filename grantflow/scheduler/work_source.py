# grantflow/scheduler/work_source.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Sequence


class WorkSource(ABC):
    """Answers "what is due right now?" for the schedule triggers.

    Implementations wrap the application's own data (grant sources, grant
    deadlines, ...). They are asked afresh on every fire and must not cache.
    """

    @abstractmethod
    def get_active_sources_for_schedule(
        self, schedule_type: str
    ) -> Iterable[Mapping[str, Any]]:
        """Active sources whose crawl schedule is ``schedule_type``.

        Each unit should carry at least ``id``; ``name`` and ``url`` are passed
        through to the crawl payload when present.
        """

    def get_upcoming_deadlines(
        self, warning_days: Sequence[int]
    ) -> Iterable[Mapping[str, Any]]:
        return []


class StaticWorkSource(WorkSource):
    """In-memory work source, handy for scripts and tests."""

    def __init__(
        self,
        sources: Iterable[Mapping[str, Any]] = (),
        deadlines: Iterable[Mapping[str, Any]] = (),
    ):
        self.sources: List[Dict[str, Any]] = [dict(s) for s in sources]
        self.deadlines: List[Dict[str, Any]] = [dict(d) for d in deadlines]

    def get_active_sources_for_schedule(self, schedule_type: str) -> List[Dict[str, Any]]:
        return [
            dict(s)
            for s in self.sources
            if s.get("isActive", True) and s.get("crawlSchedule") == schedule_type
        ]

    def get_upcoming_deadlines(self, warning_days: Sequence[int]) -> List[Dict[str, Any]]:
        return [
            dict(d) for d in self.deadlines if d.get("daysUntilDeadline") in warning_days
        ]
