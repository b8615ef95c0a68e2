"""
Core metric definitions for the exporter.

A Desc is the static half of a metric (name, help, label names) and a
Metric is one sample against it. Every value we export is a gauge, so
there is no type field -- the exposition layer wraps them all in
GaugeMetricFamily.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

NAMESPACE = "gitlab"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores, Prometheus style."""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    fq_name: str
    help_text: str
    label_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Metric:
    """A single immutable sample. Label values line up with desc.label_names."""

    desc: Desc
    value: float
    label_values: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        if len(self.label_values) != len(self.desc.label_names):
            raise ValueError(
                f"{self.desc.fq_name}: expected {len(self.desc.label_names)} label values, "
                f"got {len(self.label_values)}"
            )

    @property
    def labels(self) -> dict:
        return dict(zip(self.desc.label_names, self.label_values))


def gauge(desc: Desc, value: float, *label_values: str) -> Metric:
    """Shorthand used by collectors when pushing into a sink."""
    return Metric(desc=desc, value=float(value), label_values=tuple(label_values))


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) used to bucket "last hour" activity."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, duration: timedelta, now: Optional[datetime] = None) -> "TimeWindow":
        end = now or datetime.now(timezone.utc)
        return cls(start=end - duration, end=end)

    @classmethod
    def last_hour(cls, now: Optional[datetime] = None) -> "TimeWindow":
        return cls.trailing(timedelta(hours=1), now=now)

    def after_start(self, moment: Optional[datetime]) -> bool:
        """True if moment is set and strictly later than the window start."""
        return moment is not None and moment > self.start
