"""
Tests for the GitLab client against the fake API server.

Starts the fake server in a thread, points the client at it, and
checks parsing and pagination metadata.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from gitlab_exporter.exceptions import ConfigError, RemoteFetchError
from gitlab_exporter.gitlab.client import GitLabClient, iter_pages, parse_time


def test_parse_time_handles_zulu_suffix():
    parsed = parse_time("2024-05-01T10:00:00.000Z")
    assert parsed == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def test_parse_time_empty():
    assert parse_time(None) is None
    assert parse_time("") is None


def test_client_requires_token_and_url():
    with pytest.raises(ConfigError):
        GitLabClient("", "token")
    with pytest.raises(ConfigError):
        GitLabClient("https://gitlab.example.com", "")


def test_base_url_gets_api_prefix():
    client = GitLabClient("https://gitlab.example.com/", "token")
    assert client.base_url == "https://gitlab.example.com/api/v4"
    client.close()


def test_list_projects_reads_pagination_headers(fake_gitlab, gitlab_client):
    for i in range(1, 8):
        fake_gitlab.add_project(i, f"Project {i}", repository_size=i * 100)

    page = gitlab_client.list_projects(page=1, per_page=3)

    assert page.total_pages == 3
    assert page.total_items == 7
    assert page.next_page == 2
    assert [p.id for p in page.items] == [1, 2, 3]
    assert page.items[1].repository_size == 200
    assert page.items[1].path == "project-2"


def test_last_page_has_no_next(fake_gitlab, gitlab_client):
    for i in range(1, 8):
        fake_gitlab.add_project(i, f"p{i}")

    page = gitlab_client.list_projects(page=3, per_page=3)

    assert [p.id for p in page.items] == [7]
    assert page.next_page is None


def test_merge_requests_parse_timestamps(fake_gitlab, gitlab_client):
    now = datetime.now(timezone.utc)
    fake_gitlab.add_project(1, "alpha")
    fake_gitlab.add_merge_request(1, now - timedelta(minutes=30), merged_at=now - timedelta(minutes=10))
    fake_gitlab.add_merge_request(1, now - timedelta(hours=3))

    page = gitlab_client.list_merge_requests(1, created_after=now - timedelta(hours=1))

    assert len(page.items) == 1
    mr = page.items[0]
    assert mr.state == "merged"
    assert mr.merged_at is not None and mr.merged_at.tzinfo is not None
    assert mr.closed_at is None


def test_iter_pages_walks_every_page(fake_gitlab, gitlab_client):
    now = datetime.now(timezone.utc)
    fake_gitlab.add_project(1, "alpha")
    for i in range(7):
        fake_gitlab.add_commit(1, now - timedelta(minutes=i + 1))

    commits = list(iter_pages(
        gitlab_client.list_commits,
        project_id=1,
        since=now - timedelta(hours=1),
        until=now,
        per_page=2,
    ))

    assert len(commits) == 7
    assert len({c.id for c in commits}) == 7


def test_bad_token_raises_remote_error(gitlab_server):
    client = GitLabClient(gitlab_server.url, "wrong-token", timeout_seconds=5.0)
    try:
        with pytest.raises(RemoteFetchError) as err:
            client.list_projects()
        assert err.value.status_code == 401
    finally:
        client.close()


def test_server_error_raises_remote_error(fake_gitlab, gitlab_client):
    fake_gitlab.add_project(1, "alpha")
    fake_gitlab.failing_project_pages = {1}

    with pytest.raises(RemoteFetchError) as err:
        gitlab_client.list_projects(page=1)
    assert err.value.status_code == 500


def test_connection_failure_raises_remote_error():
    client = GitLabClient("http://127.0.0.1:1", "token", timeout_seconds=1.0)
    try:
        with pytest.raises(RemoteFetchError):
            client.list_projects()
    finally:
        client.close()


def _mock_client(handler) -> GitLabClient:
    return GitLabClient("https://gitlab.example.com", "token", transport=httpx.MockTransport(handler))


def test_missing_total_pages_header_marks_totals_unknown():
    def handler(request):
        page = int(request.url.params["page"])
        headers = {"X-Next-Page": str(page + 1)} if page < 3 else {}
        return httpx.Response(200, json=[{"id": page, "name": f"p{page}"}], headers=headers)

    client = _mock_client(handler)
    try:
        first = client.list_projects(page=1)
        assert first.totals_known is False
        assert first.total_pages == 1
        assert first.next_page == 2

        projects = list(iter_pages(client.list_projects, per_page=1))
        assert [p.id for p in projects] == [1, 2, 3]

        rest = list(iter_pages(client.list_projects, start=2, per_page=1))
        assert [p.id for p in rest] == [2, 3]
    finally:
        client.close()


@pytest.mark.parametrize("body", [{"message": "oops"}, "oops", 42])
def test_non_list_body_raises_remote_error(body):
    client = _mock_client(lambda request: httpx.Response(200, json=body))
    try:
        with pytest.raises(RemoteFetchError, match="expected a list"):
            client.list_projects()
    finally:
        client.close()


def test_non_object_items_raise_remote_error():
    client = _mock_client(lambda request: httpx.Response(200, json=["not-a-project"]))
    try:
        with pytest.raises(RemoteFetchError, match="unexpected body"):
            client.list_projects()
    finally:
        client.close()
