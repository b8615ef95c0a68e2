"""
Tests for the HTTP exposition layer.

End-to-end tests run the real repository collector against the fake
GitLab server and scrape the exporter over HTTP.
"""

import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from gitlab_exporter.collector.base import Collector
from gitlab_exporter.collector.registry import Registry
from gitlab_exporter.collector.repository import new_repository_collector
from gitlab_exporter.metrics import Desc, gauge
from gitlab_exporter.web import Exporter, ExporterServer, parse_listen_address

EXTRA = Desc("gitlab_extra_value", "Extra test value")


class _ExtraCollector(Collector):
    def update(self, sink):
        sink.put(gauge(EXTRA, 5))


def _make_exporter(client=None, with_repository=True):
    registry = Registry()
    if with_repository:
        registry.register("repository", True, new_repository_collector)
    registry.register("extra", True, lambda logger, client, settings: _ExtraCollector())
    registry.register("disabled", False, lambda logger, client, settings: _ExtraCollector())
    return Exporter(registry=registry, client=client)


def test_combined_collect_and_exclude_rejected():
    response = _make_exporter().handle_metrics(["extra"], ["repository"])
    assert response.status == 400
    assert b"Combined collect and exclude" in response.body


def test_unknown_collector_rejected():
    response = _make_exporter().handle_metrics(["bar"], [])
    assert response.status == 400
    assert b"missing collector: bar" in response.body


def test_disabled_collector_rejected():
    response = _make_exporter().handle_metrics(["disabled"], [])
    assert response.status == 400
    assert b"disabled collector: disabled" in response.body


def test_collect_filter():
    response = _make_exporter().handle_metrics(["extra"], [])
    body = response.body.decode()
    assert response.status == 200
    assert "gitlab_extra_value 5.0" in body
    assert 'collector="repository"' not in body


def test_exclude_filter():
    exporter = _make_exporter(with_repository=False)
    exporter.registry.register("other", True, lambda logger, client, settings: _ExtraCollector())

    body = exporter.handle_metrics([], ["other"]).body.decode()

    assert 'gitlab_scrape_collector_success{collector="extra"} 1.0' in body
    assert 'collector="other"' not in body


def test_excluding_everything_returns_empty():
    exporter = _make_exporter(with_repository=False)
    response = exporter.handle_metrics([], ["extra"])
    assert response.status == 200
    assert response.body == b""


def test_landing_page_links_metrics():
    response = _make_exporter().route("/")
    assert response.status == 200
    assert b'href="/metrics"' in response.body


def test_unknown_path_is_404():
    assert _make_exporter().route("/nope").status == 404


def test_parse_listen_address():
    assert parse_listen_address(":9100") == ("0.0.0.0", 9100)
    assert parse_listen_address("localhost:8080") == ("localhost", 8080)
    with pytest.raises(ValueError):
        parse_listen_address("9100")


@pytest.fixture
def exporter_server(fake_gitlab, gitlab_client):
    now = datetime.now(timezone.utc)
    fake_gitlab.add_project(1, "Alpha", repository_size=1024)
    fake_gitlab.add_merge_request(1, now - timedelta(minutes=20))
    fake_gitlab.add_commit(1, now - timedelta(minutes=5))
    fake_gitlab.add_commit(1, now - timedelta(minutes=25))
    fake_gitlab.add_project(2, "Beta", repository_size=2048)
    fake_gitlab.add_merge_request(2, now - timedelta(minutes=30), merged_at=now - timedelta(minutes=10))

    server = ExporterServer(("127.0.0.1", 0), _make_exporter(client=gitlab_client))
    threading.Thread(target=server.serve_forever, daemon=True).start()
    host, port = server.server_address[:2]
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()


def test_end_to_end_scrape(exporter_server):
    response = httpx.get(f"{exporter_server}/metrics", timeout=10.0)
    body = response.text

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")

    alpha = 'id="1",name="Alpha",path="alpha"'
    assert f"gitlab_project_size_bytes{{{alpha}}} 1024.0" in body
    assert f"gitlab_project_created_merge_requests_last_hour_total{{{alpha}}} 1.0" in body
    assert f"gitlab_project_merged_merge_requests_last_hour_total{{{alpha}}} 0.0" in body
    assert f"gitlab_project_closed_merge_requests_last_hour_total{{{alpha}}} 0.0" in body
    assert f"gitlab_project_commits_last_hour_total{{{alpha}}} 2.0" in body

    beta = 'id="2",name="Beta",path="beta"'
    assert f"gitlab_project_created_merge_requests_last_hour_total{{{beta}}} 1.0" in body
    assert f"gitlab_project_merged_merge_requests_last_hour_total{{{beta}}} 1.0" in body

    assert 'gitlab_scrape_collector_success{collector="repository"} 1.0' in body
    assert 'gitlab_scrape_collector_success{collector="extra"} 1.0' in body


def test_end_to_end_gitlab_outage(exporter_server, fake_gitlab):
    fake_gitlab.failing_project_pages = {1}

    response = httpx.get(f"{exporter_server}/metrics", timeout=10.0)

    assert response.status_code == 200
    assert 'gitlab_scrape_collector_success{collector="repository"} 0.0' in response.text
    assert "gitlab_extra_value 5.0" in response.text


def test_end_to_end_query_rejection(exporter_server):
    response = httpx.get(
        f"{exporter_server}/metrics",
        params={"collect[]": "extra", "exclude[]": "repository"},
        timeout=10.0,
    )
    assert response.status_code == 400
