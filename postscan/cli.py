"""postscan command line entry point."""

import asyncio
import json
import sys
from typing import Optional

import click
import structlog

from postscan.core.scanner import (
    QueueTrigger,
    ScanCoordinator,
    SourceUnavailableError,
    build_coordinator,
)
from postscan.db.database import close_db, configure_database, init_db
from postscan.utils.logging import setup_logging

logger = structlog.get_logger(__name__)


async def _drive(coordinator: ScanCoordinator, trigger: QueueTrigger, total: int, honor_delay: bool) -> None:
    """Run queued batches in the foreground until the scan stops re-arming."""
    with click.progressbar(length=max(total, 1), label="Scanning posts") as bar:
        def on_batch(batch_number, result):
            if result is not None:
                bar.update(result.fetched)

        try:
            await trigger.run_pending(coordinator.run_one, honor_delay=honor_delay, on_batch=on_batch)
        except SourceUnavailableError as e:
            logger.error("Foreground scan interrupted", error=str(e))
            raise click.ClickException(f"Scan interrupted: {e}. Run 'postscan resume' to continue.")


async def _run_scan(categories: Optional[str], batch_size: Optional[int], honor_delay: bool) -> None:
    await init_db()
    try:
        trigger = QueueTrigger()
        coordinator = build_coordinator(trigger)

        try:
            result = await coordinator.start_scan(categories, batch_size)
        except SourceUnavailableError as e:
            raise click.ClickException(f"Could not start scan: {e}")

        if result.dropped_categories:
            click.secho(
                f"Warning: Invalid post types: {', '.join(result.dropped_categories)}. Skipping...",
                fg="yellow", err=True,
            )
        if not result.accepted:
            raise click.ClickException(
                "A scan is already running. Use 'postscan resume' to finish it here "
                "or 'postscan cancel' to stop it."
            )
        if result.default_filter_applied and categories:
            click.secho(
                f"Warning: No valid post types given, scanning: {', '.join(result.state.item_filter)}",
                fg="yellow", err=True,
            )

        state = result.state
        click.echo(f"Starting scan for post types: {', '.join(state.item_filter)}")
        click.echo(f"Found {state.total} posts to process (batch size {state.batch_size}).")

        await _drive(coordinator, trigger, state.total, honor_delay)

        final = (await coordinator.store.load()).state
        click.secho(f"Success: Scanned {final.processed} posts.", fg="green")
    finally:
        await close_db()


async def _resume_scan(honor_delay: bool) -> None:
    await init_db()
    try:
        trigger = QueueTrigger()
        coordinator = build_coordinator(trigger)

        if not await coordinator.resume():
            click.echo("No scan is currently running.")
            return

        state = (await coordinator.store.load()).state
        click.echo(f"Resuming scan at {state.processed}/{state.total or 0} posts.")
        await _drive(coordinator, trigger, (state.total or 0) - state.processed, honor_delay)

        final = (await coordinator.store.load()).state
        click.secho(f"Success: Scanned {final.processed} posts.", fg="green")
    finally:
        await close_db()


async def _status() -> dict:
    await init_db()
    try:
        coordinator = build_coordinator(QueueTrigger())
        status = await coordinator.get_status()
        return status.model_dump(mode="json", exclude={"trigger_available", "pending_batches"})
    finally:
        await close_db()


async def _cancel() -> bool:
    await init_db()
    try:
        coordinator = build_coordinator(QueueTrigger())
        result = await coordinator.cancel_scan()
        return result.cancelled
    finally:
        await close_db()


@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="Override the database URL.")
@click.option("--log-level", default="WARNING", show_default=True, help="Log level for diagnostics written to stderr.")
def cli(database_url: Optional[str], log_level: Optional[str]) -> None:
    """Posts maintenance batch scanner."""
    setup_logging(log_level, stream=sys.stderr)
    if database_url:
        configure_database(database_url)


@cli.command("scan")
@click.option("--categories", "--post-types", "categories", default=None,
              help="Comma-separated list of post types to scan. Default: post,page")
@click.option("--batch-size", type=int, default=None, help="Number of posts to process per batch. Default: 50")
@click.option("--delay/--no-delay", default=False, help="Honor the configured delay between batches.")
def scan_command(categories: Optional[str], batch_size: Optional[int], delay: bool) -> None:
    """Scan posts in the foreground and stamp each one with the scan time."""
    asyncio.run(_run_scan(categories, batch_size, delay))


@cli.command("resume")
@click.option("--delay/--no-delay", default=False, help="Honor the configured delay between batches.")
def resume_command(delay: bool) -> None:
    """Finish a running scan in the foreground."""
    asyncio.run(_resume_scan(delay))


@cli.command("status")
def status_command() -> None:
    """Print the current scan status as JSON.

    Scheduler fields (trigger_available, pending_batches) are left out: this
    command does not see the service scheduler. Use GET /api/posts-maintenance/status
    for those.
    """
    click.echo(json.dumps(asyncio.run(_status()), indent=2))


@cli.command("cancel")
def cancel_command() -> None:
    """Stop the running scan."""
    if asyncio.run(_cancel()):
        click.echo("Scan cancelled.")
    else:
        click.echo("No scan is currently running.")


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
def serve_command(host: str, port: int) -> None:
    """Run the HTTP API with the background scheduler."""
    import uvicorn

    uvicorn.run("postscan.main:app", host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
