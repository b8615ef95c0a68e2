"""
Collection orchestrator: the collector of collectors.

Resolves a filter set against the registry, runs every selected
collector in its own worker thread, times each one, and adds a
duration/success pair per collector on top of whatever they produced.
One collector blowing up never affects the others.

There's no timeout -- a collector stuck on a hung remote call holds up
the whole scrape until it returns.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional

from prometheus_client.core import GaugeMetricFamily

from gitlab_exporter.collector.base import Collector, CollectorSettings
from gitlab_exporter.collector.registry import Registry
from gitlab_exporter.collector.sink import MetricSink
from gitlab_exporter.exceptions import NoDataError
from gitlab_exporter.metrics import NAMESPACE, Desc, Metric, build_fq_name, gauge

if TYPE_CHECKING:
    from gitlab_exporter.gitlab.client import GitLabClient

log = logging.getLogger(__name__)

SCRAPE_DURATION = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_duration_seconds"),
    "gitlab_exporter: Duration of a collector scrape.",
    ("collector",),
)
SCRAPE_SUCCESS = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_success"),
    "gitlab_exporter: Whether a collector succeeded.",
    ("collector",),
)


def execute(name: str, collector: Collector, sink: MetricSink) -> bool:
    """Run one collector, then push its duration and success samples."""
    begin = time.perf_counter()
    try:
        collector.update(sink)
    except NoDataError as e:
        duration = time.perf_counter() - begin
        log.debug("Collector %s returned no data after %.3fs: %s", name, duration, e)
        success = False
    except Exception as e:
        duration = time.perf_counter() - begin
        log.error("Collector %s failed after %.3fs: %s", name, duration, e)
        log.debug("Collector %s traceback", name, exc_info=True)
        success = False
    else:
        duration = time.perf_counter() - begin
        log.debug("Collector %s succeeded in %.3fs", name, duration)
        success = True

    sink.put(gauge(SCRAPE_DURATION, duration, name))
    sink.put(gauge(SCRAPE_SUCCESS, 1.0 if success else 0.0, name))
    return success


def to_metric_families(metrics: Iterable[Metric]) -> List[GaugeMetricFamily]:
    """Group samples by descriptor into prometheus_client families (first-seen order)."""
    families: Dict[Desc, GaugeMetricFamily] = {}
    for metric in metrics:
        family = families.get(metric.desc)
        if family is None:
            family = GaugeMetricFamily(
                metric.desc.fq_name,
                metric.desc.help_text,
                labels=list(metric.desc.label_names),
            )
            families[metric.desc] = family
        family.add_metric(list(metric.label_values), metric.value)
    return list(families.values())


class GitLabCollector:
    """Runs a filtered set of collectors for one scrape.

    Also speaks the prometheus_client custom-collector protocol, so an
    instance can be registered straight into a CollectorRegistry.
    """

    def __init__(
        self,
        registry: Registry,
        client: Optional["GitLabClient"],
        filter_names: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
        settings: Optional[CollectorSettings] = None,
    ):
        self.collectors: Dict[str, Collector] = registry.resolve(
            list(filter_names), client, logger=logger, settings=settings
        )

    def collect_into(self, sink: MetricSink) -> Dict[str, bool]:
        """Run every collector concurrently, then close the sink.

        Returns name -> success, mostly useful for logging and tests.
        """
        results: Dict[str, bool] = {}
        try:
            if not self.collectors:
                return results

            # One thread per collector
            with ThreadPoolExecutor(max_workers=len(self.collectors), thread_name_prefix="collector") as pool:
                futures = {
                    pool.submit(execute, name, collector, sink): name
                    for name, collector in self.collectors.items()
                }
                wait(futures)
                for future, name in futures.items():
                    results[name] = future.result()
        finally:
            sink.close()
        return results

    def stream(self) -> Iterator[Metric]:
        """Yield samples as the collectors produce them.

        A closer thread waits for every collector and then closes the
        sink; we just drain it until it's closed.
        """
        sink = MetricSink()
        closer = threading.Thread(
            target=self.collect_into, args=(sink,), name="collector-closer", daemon=True
        )
        closer.start()
        yield from sink
        closer.join()

    # prometheus_client protocol

    def describe(self) -> List[GaugeMetricFamily]:
        return [
            GaugeMetricFamily(SCRAPE_DURATION.fq_name, SCRAPE_DURATION.help_text, labels=["collector"]),
            GaugeMetricFamily(SCRAPE_SUCCESS.fq_name, SCRAPE_SUCCESS.help_text, labels=["collector"]),
        ]

    def collect(self) -> Iterator[GaugeMetricFamily]:
        yield from to_metric_families(self.stream())
