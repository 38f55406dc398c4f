"""Command-line interface for one-off volguard operations."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import click
import structlog
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.dependencies.http_client import http_client_dependency
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from safir.sentry import initialize_sentry, report_exception

from . import __version__
from .config import Config
from .constants import CONFIGURATION_PATH, CONFIGURATION_PATH_ENV
from .factory import Factory, ProcessContext
from .timeout import Timeout
from .units import bytes_to_quantity

__all__ = ["main", "main_with_sentry"]


def _common[**P, R](
    func: Callable[P, Coroutine[Any, Any, R]],
) -> Callable[P, R]:
    """Add the configuration option to a command and run it in asyncio."""
    option = click.option(
        "--config-path",
        "-c",
        type=click.Path(path_type=Path),
        envvar=CONFIGURATION_PATH_ENV,
        default=CONFIGURATION_PATH,
        show_default=True,
        help="Path to the volguard configuration",
    )
    return option(run_with_asyncio(func))


@asynccontextmanager
async def _process_context(config_path: Path) -> AsyncIterator[ProcessContext]:
    """Load the configuration and build a process context for one command.

    Background tasks are not started. Exceptions are reported to Slack if
    a Slack webhook is configured.
    """
    config = Config.from_file(config_path)
    configure_logging(
        name="volguard", profile=config.profile, log_level=config.log_level
    )
    await initialize_kubernetes()
    context = await ProcessContext.from_config(config)
    try:
        yield context
    except click.ClickException:
        raise
    except Exception as exc:
        await report_exception(exc, context.slack_client)
        raise
    finally:
        await context.aclose()
        await http_client_dependency.aclose()


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """volguard command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command()
@click.argument("node")
@_common
async def capacity(*, node: str, config_path: Path) -> None:
    """Show the free volume group capacity of a node."""
    async with _process_context(config_path) as context:
        logger = structlog.get_logger("volguard")
        oracle = Factory(context, logger).create_capacity_oracle()
        timeout = Timeout("Capacity query", context.config.admission.timeout)
        free = await oracle.free_capacity(node, timeout)
    click.echo(f"{node}: {bytes_to_quantity(free)} free ({free} bytes)")


@main.command()
@_common
async def reconcile(*, config_path: Path) -> None:
    """Run one volume reconciliation pass on this node."""
    async with _process_context(config_path) as context:
        if not context.reconciler:
            raise click.UsageError("Node agent is disabled in configuration")
        resized = await context.reconciler.reconcile()
    for name in resized:
        click.echo(name)


def main_with_sentry() -> None:
    """Call the main command group after initializing Sentry."""
    initialize_sentry(release=__version__)
    main()
