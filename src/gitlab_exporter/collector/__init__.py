"""
Collectors and the machinery that runs them.

Importing this package registers every built-in collector with the
default registry.
"""

from gitlab_exporter.collector.base import Collector, CollectorSettings
from gitlab_exporter.collector.orchestrator import GitLabCollector
from gitlab_exporter.collector.registry import Registry, default_registry, register_collector
from gitlab_exporter.collector.sink import MetricSink

# Built-in collectors register themselves on import
from gitlab_exporter.collector import repository  # noqa: F401

__all__ = [
    "Collector",
    "CollectorSettings",
    "GitLabCollector",
    "MetricSink",
    "Registry",
    "default_registry",
    "register_collector",
]
