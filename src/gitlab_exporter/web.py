"""
HTTP side of the exporter: metrics endpoint plus a small landing page.

    GET /metrics                          every enabled collector
    GET /metrics?collect[]=repository     only the named ones
    GET /metrics?exclude[]=repository     enabled ones minus the named ones

collect[] and exclude[] can't be combined. Each request gets its own
prometheus_client registry wrapping a fresh GitLabCollector, but the
collector instances underneath are the memoized ones from the Registry.
"""

from __future__ import annotations

import html
import logging
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlsplit

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from gitlab_exporter import __version__
from gitlab_exporter.collector.base import CollectorSettings
from gitlab_exporter.collector.orchestrator import GitLabCollector
from gitlab_exporter.collector.registry import Registry
from gitlab_exporter.exceptions import CollectorDisabledError, UnknownCollectorError
from gitlab_exporter.gitlab.client import GitLabClient

log = logging.getLogger(__name__)

DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_LISTEN_ADDRESS = ":9100"

LANDING_TEMPLATE = """<html>
<head><title>GitLab Exporter</title></head>
<body>
<h1>GitLab Exporter</h1>
<p>Prometheus GitLab Exporter</p>
<p>Version: {version}</p>
<ul><li><a href="{path}">Metrics</a></li></ul>
</body>
</html>
"""


@dataclass
class Response:
    status: int
    body: bytes
    content_type: str = "text/plain; charset=utf-8"


@dataclass
class Exporter:
    """Everything a request needs to build a scrape."""

    registry: Registry
    client: Optional[GitLabClient]
    settings: CollectorSettings = field(default_factory=CollectorSettings)
    metrics_path: str = DEFAULT_METRICS_PATH
    max_requests_in_flight: int = 1

    def __post_init__(self):
        self._in_flight = threading.BoundedSemaphore(max(1, self.max_requests_in_flight))

    @property
    def enabled_collectors(self) -> List[str]:
        return self.registry.enabled_names()

    def resolve_filters(self, collects: Sequence[str], excludes: Sequence[str]) -> List[str]:
        if excludes:
            return [name for name in self.enabled_collectors if name not in excludes]
        return list(collects)

    def scrape(self, filters: Sequence[str] = ()) -> bytes:
        """Run one scrape and return the text exposition."""
        collector = GitLabCollector(
            self.registry,
            self.client,
            filter_names=filters,
            settings=self.settings,
        )
        registry = CollectorRegistry()
        registry.register(collector)
        return generate_latest(registry)

    def handle_metrics(self, collects: Sequence[str], excludes: Sequence[str]) -> Response:
        log.debug("collect query: %s", list(collects))
        log.debug("exclude query: %s", list(excludes))

        if collects and excludes:
            log.debug("Rejecting combined collect and exclude queries")
            return Response(400, b"Combined collect and exclude queries are not allowed")

        filters = self.resolve_filters(collects, excludes)
        if excludes and not filters:
            # Everything was excluded; an empty filter would mean "all"
            return Response(200, b"", CONTENT_TYPE_LATEST)

        if not self._in_flight.acquire(blocking=False):
            return Response(503, b"Limit of concurrent requests reached, try again later")
        try:
            body = self.scrape(filters)
        except (UnknownCollectorError, CollectorDisabledError) as e:
            log.warning("Couldn't create filtered metrics handler: %s", e)
            return Response(400, f"Couldn't create filtered metrics handler: {e}".encode())
        finally:
            self._in_flight.release()

        return Response(200, body, CONTENT_TYPE_LATEST)

    def handle_landing(self) -> Response:
        page = LANDING_TEMPLATE.format(
            version=html.escape(__version__), path=html.escape(self.metrics_path)
        )
        return Response(200, page.encode(), "text/html; charset=utf-8")

    def route(self, raw_path: str) -> Response:
        parts = urlsplit(raw_path)
        if parts.path == self.metrics_path:
            query = parse_qs(parts.query)
            return self.handle_metrics(query.get("collect[]", []), query.get("exclude[]", []))
        if parts.path == "/":
            return self.handle_landing()
        return Response(404, b"Not Found")


class MetricsHandler(BaseHTTPRequestHandler):
    server: "ExporterServer"

    def do_GET(self):
        try:
            response = self.server.exporter.route(self.path)
        except Exception as e:
            log.exception("Scrape failed")
            response = Response(500, f"Error collecting metrics: {e}".encode())

        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        self.wfile.write(response.body)

    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)


class ExporterServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: Tuple[str, int], exporter: Exporter):
        super().__init__(address, MetricsHandler)
        self.exporter = exporter


def parse_listen_address(address: str) -> Tuple[str, int]:
    """':9100' -> ('0.0.0.0', 9100), 'localhost:8080' -> ('localhost', 8080)."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {address!r}")
    return host.strip("[]") or "0.0.0.0", int(port)


def serve(exporter: Exporter, listen_address: str = DEFAULT_LISTEN_ADDRESS):
    host, port = parse_listen_address(listen_address)
    server = ExporterServer((host, port), exporter)
    log.info("Listening on %s:%d, metrics at %s", host, port, exporter.metrics_path)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        log.info("Server stopped")
