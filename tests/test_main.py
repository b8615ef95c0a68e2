"""Tests for the command line: generated collector flags and subcommands."""

import pytest
from click.testing import CliRunner

from gitlab_exporter import __version__
from gitlab_exporter.collector import default_registry
from gitlab_exporter.main import cli


@pytest.fixture(autouse=True)
def _restore_registry():
    yield
    default_registry.set_enabled("repository", True)


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_collector_flags():
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "--collector.repository" in result.output
    assert "--no-collector.repository" in result.output


def test_collectors_command_shows_state():
    result = CliRunner().invoke(cli, ["collectors"])
    assert result.exit_code == 0
    assert "repository" in result.output
    assert "yes" in result.output


def test_disable_flag_updates_registry():
    result = CliRunner().invoke(cli, ["--no-collector.repository", "collectors"])
    assert result.exit_code == 0
    assert not default_registry.is_enabled("repository")


def test_scrape_without_config_exits(tmp_path, monkeypatch):
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)
    monkeypatch.delenv("GITLAB_URL", raising=False)
    result = CliRunner().invoke(cli, ["--gitlab.config-path", str(tmp_path / "missing.ini"), "scrape"])
    assert result.exit_code == 1


def test_scrape_prints_exposition(tmp_path, monkeypatch, fake_gitlab, gitlab_server):
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)
    monkeypatch.delenv("GITLAB_URL", raising=False)
    fake_gitlab.add_project(1, "Alpha", repository_size=1024)
    config = tmp_path / "config.ini"
    config.write_text(f"[gitlab]\nTOKEN = {fake_gitlab.token}\nURL = {gitlab_server.url}\n")

    result = CliRunner().invoke(
        cli, ["--gitlab.config-path", str(config), "scrape", "--collect", "repository"]
    )

    assert result.exit_code == 0, result.output
    assert 'gitlab_project_size_bytes{id="1",name="Alpha",path="alpha"} 1024.0' in result.output
