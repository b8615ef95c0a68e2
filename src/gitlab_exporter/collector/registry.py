"""
Collector registry.

Maps a collector name to its factory and enabled flag, and hands out
memoized instances. The lifecycle is register-then-resolve: every
register() call happens at import time of the collector modules, the
CLI flips enabled flags once at startup, and only after that do scrapes
start calling resolve().

The name is the one key everywhere -- CLI flag suffix
(--collector.<name>), collect[]/exclude[] query token and lookup key.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from gitlab_exporter.collector.base import Collector, CollectorSettings
from gitlab_exporter.exceptions import CollectorDisabledError, UnknownCollectorError

if TYPE_CHECKING:
    from gitlab_exporter.gitlab.client import GitLabClient

log = logging.getLogger(__name__)

Factory = Callable[[logging.Logger, "GitLabClient", CollectorSettings], Collector]


@dataclass(frozen=True)
class CollectorDescriptor:
    name: str
    default_enabled: bool
    factory: Factory


class Registry:

    def __init__(self):
        self._descriptors: Dict[str, CollectorDescriptor] = {}
        self._enabled: Dict[str, bool] = {}
        self._instances: Dict[str, Collector] = {}
        self._instances_lock = threading.Lock()

    def register(self, name: str, default_enabled: bool, factory: Factory) -> None:
        """Add a collector. Init-time only; a repeated name replaces the earlier entry."""
        if name in self._descriptors:
            log.warning("Collector %s registered twice, keeping the later one", name)
        self._descriptors[name] = CollectorDescriptor(name, default_enabled, factory)
        self._enabled[name] = default_enabled

    def set_enabled(self, name: str, enabled: bool) -> None:
        if name not in self._descriptors:
            raise UnknownCollectorError(name)
        self._enabled[name] = enabled

    def is_enabled(self, name: str) -> bool:
        if name not in self._descriptors:
            raise UnknownCollectorError(name)
        return self._enabled[name]

    def names(self) -> List[str]:
        return sorted(self._descriptors)

    def enabled_names(self) -> List[str]:
        return [name for name in self.names() if self._enabled[name]]

    def descriptors(self) -> List[CollectorDescriptor]:
        return [self._descriptors[name] for name in self.names()]

    def resolve(
        self,
        filter_names: Iterable[str],
        client: Optional["GitLabClient"],
        logger: Optional[logging.Logger] = None,
        settings: Optional[CollectorSettings] = None,
    ) -> Dict[str, Collector]:
        """Return name -> instance for the requested collectors.

        An empty filter means every enabled collector. All names are
        validated before any factory runs, so a rejected request never
        constructs anything. Factory errors propagate and aren't cached.
        """
        wanted = set()
        for name in filter_names:
            if name not in self._descriptors:
                raise UnknownCollectorError(name)
            if not self._enabled[name]:
                raise CollectorDisabledError(name)
            wanted.add(name)

        base_logger = logger or logging.getLogger("gitlab_exporter.collector")
        settings = settings or CollectorSettings()
        collectors: Dict[str, Collector] = {}

        with self._instances_lock:
            for name in self.names():
                if not self._enabled[name] or (wanted and name not in wanted):
                    continue

                instance = self._instances.get(name)
                if instance is None:
                    factory = self._descriptors[name].factory
                    instance = factory(base_logger.getChild(name), client, settings)
                    self._instances[name] = instance
                    log.debug("Built collector %s", name)

                collectors[name] = instance

        return collectors


# Process-wide registry the built-in collectors add themselves to
default_registry = Registry()


def register_collector(name: str, default_enabled: bool, factory: Factory) -> None:
    default_registry.register(name, default_enabled, factory)
