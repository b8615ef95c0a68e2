"""
Output sink for one scrape.

Many collector threads put() into it, exactly one reader iterates it.
The reader blocks until close() is called, which the orchestrator does
only after every producer has returned.
"""

from __future__ import annotations

import queue
import threading
from typing import Iterator

from gitlab_exporter.metrics import Metric

_CLOSED = object()


class SinkClosedError(RuntimeError):
    pass


class MetricSink:

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, metric: Metric) -> None:
        with self._lock:
            if self._closed:
                raise SinkClosedError(f"sink closed, dropping {metric.desc.fq_name}")
            self._queue.put(metric)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[Metric]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def drain(self) -> list:
        """Close and collect everything. Only safe once producers are done."""
        self.close()
        return list(self)
