"""CLI tools for follow-up administration."""

import asyncio
import logging
from datetime import datetime, timezone

import click

from followups.core.exceptions import TransportConfigError
from followups.db.session import SessionLocal
from followups.services import execution_service
from followups.services.scheduler import Scheduler


@click.group()
@click.option("--verbose", is_flag=True, help="Log at DEBUG level")
def cli(verbose: bool):
    """Follow-up engine CLI tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@cli.command()
@click.option("--batch-size", type=int, default=None, help="Max executions to advance")
def process_pending(batch_size: int | None):
    """
    Run one scheduler sweep now.

    Example:
        followups process-pending --batch-size 50
    """
    try:
        scheduler = Scheduler(batch_size=batch_size)
    except TransportConfigError as e:
        raise click.ClickException(str(e))
    result = asyncio.run(scheduler.run_once())
    click.echo(
        f"due={result.due} sent={result.sent} completed={result.completed} "
        f"abandoned={result.abandoned} failed={result.failed} "
        f"deferred={result.deferred} skipped={result.skipped} errors={result.errors}"
    )


@cli.command()
@click.option("--limit", type=int, default=20, show_default=True)
def list_due(limit: int):
    """List executions whose next step is due now."""
    db = SessionLocal()
    try:
        due_ids = execution_service.find_due_execution_ids(
            db, now=datetime.now(timezone.utc), limit=limit
        )
        if not due_ids:
            click.echo("No due executions")
            return
        for execution_id in due_ids:
            click.echo(str(execution_id))
    finally:
        db.close()


if __name__ == "__main__":
    cli()
