"""
GitLab exporter entry point.

Usage:
    gitlab-exporter                                   Serve /metrics on :9100
    gitlab-exporter --no-collector.repository         Serve with a collector off
    gitlab-exporter collectors                        List collectors and state
    gitlab-exporter scrape --collect repository       One scrape to stdout
"""

from __future__ import annotations

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gitlab_exporter import __version__
from gitlab_exporter.collector import default_registry
from gitlab_exporter.collector.base import DEFAULT_MAX_WORKERS, CollectorSettings
from gitlab_exporter.collector.registry import Registry
from gitlab_exporter.config import DEFAULT_CONFIG_PATH, load_config
from gitlab_exporter.exceptions import ExporterError
from gitlab_exporter.gitlab.client import DEFAULT_TIMEOUT_SECONDS, GitLabClient
from gitlab_exporter.web import DEFAULT_LISTEN_ADDRESS, DEFAULT_METRICS_PATH, Exporter, serve


log = logging.getLogger("gitlab_exporter")

LOG_LEVELS = ["debug", "info", "warning", "error"]


def setup_logging(level: str, verbose: bool = False):
    numeric = logging.DEBUG if verbose else getattr(logging, level.upper())
    if sys.stderr.isatty():
        logging.basicConfig(
            level=numeric,
            format="%(message)s",
            datefmt="%H:%M:%S",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        )
    else:
        logging.basicConfig(
            level=numeric,
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))


def _flag_param(name: str) -> str:
    return "collector_" + name.replace("-", "_").replace(".", "_")


def collector_flags(registry: Registry):
    """Add --collector.<name>/--no-collector.<name> for every registered collector."""
    def decorator(f):
        for descriptor in reversed(registry.descriptors()):
            state = "enabled" if descriptor.default_enabled else "disabled"
            f = click.option(
                f"--collector.{descriptor.name}/--no-collector.{descriptor.name}",
                _flag_param(descriptor.name),
                default=descriptor.default_enabled,
                help=f"Enable the {descriptor.name} collector (default: {state}).",
            )(f)
        return f
    return decorator


def apply_collector_flags(registry: Registry, params: dict):
    for name in registry.names():
        key = _flag_param(name)
        if key in params:
            registry.set_enabled(name, params.pop(key))


def build_client(ctx) -> GitLabClient:
    try:
        config = load_config(ctx.obj["config_path"])
        return GitLabClient(config.url, config.token, timeout_seconds=ctx.obj["timeout"])
    except ExporterError as e:
        log.error("%s", e)
        raise SystemExit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="gitlab-exporter")
@click.option("--web.listen-address", "listen_address", default=DEFAULT_LISTEN_ADDRESS,
              show_default=True, help="Address to listen on for web interface and telemetry")
@click.option("--web.telemetry-path", "metrics_path", default=DEFAULT_METRICS_PATH,
              show_default=True, help="Path under which to expose metrics")
@click.option("--web.max-requests", "max_requests", default=1, show_default=True,
              help="Maximum number of parallel scrape requests")
@click.option("--gitlab.config-path", "config_path", default=DEFAULT_CONFIG_PATH,
              show_default=True, help="GitLab config path (INI with a [gitlab] section)")
@click.option("--gitlab.timeout", "timeout", default=DEFAULT_TIMEOUT_SECONDS,
              show_default=True, help="GitLab API request timeout in seconds")
@click.option("--gitlab.max-concurrency", "max_concurrency", default=DEFAULT_MAX_WORKERS,
              show_default=True, help="Max concurrent GitLab API calls per fan-out stage")
@click.option("--log.level", "log_level", type=click.Choice(LOG_LEVELS), default="info",
              show_default=True, help="Only log messages with the given severity or above")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@collector_flags(default_registry)
@click.pass_context
def cli(ctx, listen_address: str, metrics_path: str, max_requests: int, config_path: str,
        timeout: float, max_concurrency: int, log_level: str, verbose: bool, **collector_params):
    """GitLab Exporter - Prometheus metrics for a GitLab instance."""
    setup_logging(log_level, verbose)
    apply_collector_flags(default_registry, collector_params)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["timeout"] = timeout
    ctx.obj["settings"] = CollectorSettings(max_workers=max_concurrency)

    if ctx.invoked_subcommand is not None:
        return

    log.info("Starting gitlab-exporter %s", __version__)
    log.info("Enabled collectors: %s", ", ".join(default_registry.enabled_names()) or "(none)")

    client = build_client(ctx)
    exporter = Exporter(
        registry=default_registry,
        client=client,
        settings=ctx.obj["settings"],
        metrics_path=metrics_path,
        max_requests_in_flight=max_requests,
    )
    try:
        serve(exporter, listen_address)
    finally:
        client.close()


@cli.command()
def collectors():
    """List registered collectors and whether they're enabled."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Collector")
    table.add_column("Default", justify="center")
    table.add_column("Enabled", justify="center")

    for descriptor in default_registry.descriptors():
        enabled = default_registry.is_enabled(descriptor.name)
        table.add_row(
            f"[cyan]{descriptor.name}[/cyan]",
            "on" if descriptor.default_enabled else "off",
            "[green]yes[/green]" if enabled else "[dim]no[/dim]",
        )

    Console().print(table)


@cli.command()
@click.option("--collect", "collects", multiple=True, help="Only run this collector (repeatable)")
@click.option("--exclude", "excludes", multiple=True, help="Skip this collector (repeatable)")
@click.pass_context
def scrape(ctx, collects, excludes):
    """Run one scrape and print the exposition to stdout."""
    client = build_client(ctx)
    exporter = Exporter(registry=default_registry, client=client, settings=ctx.obj["settings"])
    try:
        response = exporter.handle_metrics(list(collects), list(excludes))
    finally:
        client.close()

    if response.status != 200:
        click.echo(response.body.decode(), err=True)
        raise SystemExit(1)
    click.echo(response.body.decode(), nl=False)


if __name__ == "__main__":
    cli()
