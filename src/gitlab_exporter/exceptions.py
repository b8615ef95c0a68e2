"""
Exceptions shared across the exporter.

Everything derives from ExporterError so the web layer can turn any
of them into a readable message without catching bare Exception.
"""

from typing import Optional


class ExporterError(Exception):
    """Base exception for the exporter."""


class ConfigError(ExporterError):
    """Raised when the GitLab token or URL can't be loaded."""


class UnknownCollectorError(ExporterError):
    """A filter named a collector that was never registered."""

    def __init__(self, name: str):
        super().__init__(f"missing collector: {name}")
        self.name = name


class CollectorDisabledError(ExporterError):
    """A filter named a collector that exists but is switched off."""

    def __init__(self, name: str):
        super().__init__(f"disabled collector: {name}")
        self.name = name


class CollectorError(ExporterError):
    """Generic failure inside a collector's update()."""


class NoDataError(CollectorError):
    """The collector ran but had nothing meaningful to report."""

    def __init__(self, message: str = "collector returned no data"):
        super().__init__(message)


class RemoteFetchError(CollectorError):
    """A call to the GitLab API failed (transport or HTTP status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
