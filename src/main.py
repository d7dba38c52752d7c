#!/usr/bin/env python3
"""
stepsync CLI - Synchronize plugin step registrations with the registry.

Reads a declaration document produced by the metadata extractor and
reconciles the plugin types, steps and images of one assembly against the
remote registry.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import click

from config import get_config
from errors import SyncError
from registry import RegistryClient, get_backend_registry
from remote_state import load_remote_state
from report import (
    render_plan,
    render_remote_state,
    render_report,
    report_to_json,
)
from sync import SyncResult, Synchronizer

logger = logging.getLogger(__name__)

EXIT_FATAL = 2


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_config().sync.log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _create_client(backend: Optional[str], url: Optional[str]) -> RegistryClient:
    registry_config = get_config().registry
    backend_config = registry_config.backend_config()
    if url:
        backend_config["url"] = url
    return await get_backend_registry().create(
        backend or registry_config.backend, backend_config
    )


def _install_signal_handlers(cancel_event: asyncio.Event) -> None:
    """Stop the run before its next operation on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.warning("Received shutdown signal, stopping after current operation")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig.name}")


async def _sync(
    declaration_file: str,
    scope: str,
    dry_run: bool,
    force: bool,
    backend: Optional[str],
    url: Optional[str],
    timeout: Optional[float],
) -> SyncResult:
    cfg = get_config()
    client = await _create_client(backend, url)
    cancel_event = asyncio.Event()
    _install_signal_handlers(cancel_event)
    try:
        synchronizer = Synchronizer(
            client,
            apply_config=cfg.apply,
            timeout=timeout if timeout is not None else cfg.registry.timeout,
            cancel_event=cancel_event,
        )
        return await synchronizer.run(
            declaration_file, scope, dry_run=dry_run, force=force
        )
    finally:
        await client.close()


def _resolve_scope(scope: Optional[str]) -> str:
    scope = scope or get_config().sync.scope
    if not scope:
        raise click.UsageError("No scope given. Use --scope or set STEPSYNC_SCOPE.")
    return scope


def _run(
    declaration_file, scope, dry_run, force, backend, url, timeout, output, verbose
):
    _configure_logging(verbose)
    scope = _resolve_scope(scope)

    try:
        result = asyncio.run(
            _sync(declaration_file, scope, dry_run, force, backend, url, timeout)
        )
    except (SyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)

    if output == "json":
        click.echo(report_to_json(result.report))
    else:
        if dry_run:
            click.echo(render_plan(result.plan))
            click.echo("")
        click.echo(render_report(result.report))

    sys.exit(result.report.exit_code)


_common_options = [
    click.option("--scope", "-s", help="Plugin assembly to reconcile"),
    click.option("--force", is_flag=True, help="Delete orphaned registrations"),
    click.option("--backend", "-b", help="Registry backend (default: webapi)"),
    click.option("--url", help="Registry URL (overrides DATAVERSE_URL)"),
    click.option("--timeout", type=float, help="Seconds allowed per remote call"),
    click.option(
        "--output", "-o", type=click.Choice(["table", "json"]), default="table"
    ),
    click.option("--verbose", "-v", is_flag=True, help="Enable debug logging"),
]


def common_options(func):
    for option in reversed(_common_options):
        func = option(func)
    return func


@click.group()
def cli():
    """stepsync - reconcile plugin step registrations with the registry"""
    pass


@cli.command()
@click.argument("declaration_file", type=click.Path(exists=True))
@common_options
def plan(declaration_file, scope, force, backend, url, timeout, output, verbose):
    """Show what apply would change, without changing anything"""
    _run(declaration_file, scope, True, force, backend, url, timeout, output, verbose)


@cli.command()
@click.argument("declaration_file", type=click.Path(exists=True))
@click.option("--dry-run", is_flag=True, help="Print the plan only")
@common_options
def apply(
    declaration_file, dry_run, scope, force, backend, url, timeout, output, verbose
):
    """Apply a declaration document to the registry"""
    _run(
        declaration_file, scope, dry_run, force, backend, url, timeout, output, verbose
    )


@cli.command()
@click.option("--scope", "-s", help="Plugin assembly to show")
@click.option("--backend", "-b", help="Registry backend (default: webapi)")
@click.option("--url", help="Registry URL (overrides DATAVERSE_URL)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def show(scope, backend, url, verbose):
    """Show the registered plugin types, steps and images of a scope"""
    _configure_logging(verbose)
    scope = _resolve_scope(scope)

    async def _show():
        client = await _create_client(backend, url)
        try:
            return await load_remote_state(
                client, scope, timeout=get_config().registry.timeout
            )
        finally:
            await client.close()

    try:
        state = asyncio.run(_show())
    except (SyncError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)

    click.echo(render_remote_state(state))


if __name__ == "__main__":
    cli()
