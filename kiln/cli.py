"""Command-line interface for Kiln.

This module defines the CLI commands using Click framework.
It provides commands for building the site, watching it with live reload and
cleaning the build output.

Commands:
- build: Clean, copy, render and compile styles once, then exit.
- watch: Build once, then serve with live reload and rebuild on changes.
- clean: Remove the build output directory.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from . import __version__
from .config import BuildConfig, ConfigError
from .log_utils import setup_logging
from .tasks import TaskError, TaskFailedError


@click.group()
@click.version_option(version=__version__, prog_name="kiln")
@click.option(
    "--project",
    "-C",
    "project",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project root (defaults to the current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.pass_context
def cli(ctx: click.Context, project: Path | None, verbose: bool):
    """Kiln static site build pipeline."""
    setup_logging(verbose)
    ctx.obj = {"project_root": (project or Path.cwd()).resolve()}


@cli.command()
@click.pass_obj
def build(obj: dict):
    """Build the site into the output directory."""
    from .build import SiteBuilder, create_task_graph

    config = _load(obj["project_root"])
    builder = SiteBuilder(config)
    graph = create_task_graph(builder)
    _run(graph.run(["build"]))
    report = builder.report
    click.echo(
        f"Built {len(report.rendered)} pages, {len(report.styles)} stylesheets "
        f"and {len(report.copied)} static files into {config.build_dir}"
    )


@cli.command()
@click.option("--port", type=int, required=False, help="Port to run the dev server (overrides kiln.yaml)")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides kiln.yaml ws_port)",
)
@click.pass_obj
def watch(obj: dict, port: int | None, ws_port: int | None):
    """Build, serve with live reload and rebuild on changes."""
    from .build import SiteBuilder, create_task_graph
    from .server import DevServer
    from .watcher import Watcher

    config = _load(obj["project_root"], port=port, ws_port=ws_port)
    server = DevServer(config)
    builder = SiteBuilder(config, notifier=server)
    watcher = Watcher(builder)
    graph = create_task_graph(builder, server=server, watcher=watcher)
    try:
        _run(graph.run(["watch"]))
    except KeyboardInterrupt:  # pragma: no cover - interactive path
        click.echo("Stopped.")


@cli.command()
@click.pass_obj
def clean(obj: dict):
    """Remove the build output directory."""
    from .build import SiteBuilder, create_task_graph

    config = _load(obj["project_root"])
    graph = create_task_graph(SiteBuilder(config))
    _run(graph.run(["clean"]))


def _load(project_root: Path, **overrides) -> BuildConfig:
    try:
        return BuildConfig.from_project(project_root, **overrides)
    except ConfigError as exc:
        _fail("Invalid configuration:", f"  {exc.key}: {exc.message}")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except TaskFailedError as exc:
        _fail("Build failed:", f"  Task: {exc.name}", f"  Error: {exc.error}")
    except TaskError as exc:
        _fail("Build failed:", f"  Error: {exc}")


def _fail(title: str, *details: str):
    click.echo(click.style(title, fg="red", bold=True), err=True)
    for line in details:
        click.echo(click.style(line, fg="yellow"), err=True)
    raise SystemExit(1)


def main():
    """Entry point for the CLI application."""
    cli()
