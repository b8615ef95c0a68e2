"""
Base collector interface.

A collector knows how to fetch one category of GitLab data and push
zero or more Metric samples into a shared sink. It signals problems by
raising: NoDataError when it ran but had nothing to say, anything else
for a real failure. The orchestrator owns timing and success tracking,
so collectors never report on themselves.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from gitlab_exporter.collector.sink import MetricSink

DEFAULT_MAX_WORKERS = 16
DEFAULT_PROJECTS_PER_PAGE = 50


@dataclass(frozen=True)
class CollectorSettings:
    """Knobs handed to every collector factory, set once from the CLI."""

    max_workers: int = DEFAULT_MAX_WORKERS  # per fan-out stage
    projects_per_page: int = DEFAULT_PROJECTS_PER_PAGE


class Collector(ABC):
    """Interface for all registered collectors."""

    @abstractmethod
    def update(self, sink: MetricSink) -> None:
        """Fetch current data and put samples into the sink."""
        ...
