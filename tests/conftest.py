import pytest

from gitlab_exporter.gitlab.client import GitLabClient
from gitlab_exporter.mock.fake_gitlab_server import FakeGitLab, FakeGitLabServer


@pytest.fixture
def fake_gitlab():
    return FakeGitLab()


@pytest.fixture
def gitlab_server(fake_gitlab):
    server = FakeGitLabServer(("127.0.0.1", 0), fake_gitlab)
    server.start_background()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def gitlab_client(gitlab_server, fake_gitlab):
    client = GitLabClient(gitlab_server.url, fake_gitlab.token, timeout_seconds=5.0)
    yield client
    client.close()
