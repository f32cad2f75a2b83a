#!/usr/bin/env python3
"""
CLI for the view count workflows.

Provides commands to trigger a sync run by hand, to create the periodic
sync schedule, and to prune old view history.
"""

import asyncio
import logging
import os
import sys
from typing import Optional, Tuple

import click
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter

from viewcount.worker import DEFAULT_TASK_QUEUE, ensure_sync_schedule
from viewcount.workflows import PruneViewHistoryWorkflow, ViewCountSyncWorkflow

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _connect(temporal_address: str) -> Client:
    click.echo(f"Connecting to Temporal at {temporal_address}...")
    return await Client.connect(
        temporal_address, data_converter=pydantic_data_converter
    )


async def _trigger_sync(
    external_ids: Tuple[str, ...], temporal_address: str, task_queue: str
) -> bool:
    client = await _connect(temporal_address)
    handle = await client.start_workflow(
        ViewCountSyncWorkflow.run,
        list(external_ids) or None,
        id="viewcount-sync-manual",
        task_queue=task_queue,
    )
    click.echo(f"Workflow ID: {handle.id}")
    click.echo(f"Run ID: {handle.result_run_id}")
    click.echo()
    click.echo("Waiting for workflow completion...")

    result = await handle.result()
    if result is None:
        click.echo("View count sync failed!", err=True)
        return False

    click.echo(f"Status: {result.status.value}")
    click.echo(f"Processed: {len(result.processed)}")
    for external_id, category in sorted(result.notified.items()):
        click.echo(f"  {external_id}: {category.value}")
    if result.not_returned:
        click.echo(f"Not returned: {', '.join(result.not_returned)}")
    click.echo(f"Inserted: {len(result.inserted)}")
    if result.missing_samples:
        click.echo(f"Missing samples: {', '.join(result.missing_samples)}")
    if result.failed_inserts:
        click.echo(f"Failed inserts: {', '.join(result.failed_inserts)}")
    if result.skipped:
        click.echo(f"Skipped: {', '.join(result.skipped)}")
    return True


async def _create_schedule(
    temporal_address: str,
    task_queue: str,
    cron: Optional[str],
    time_zone: Optional[str],
) -> None:
    client = await _connect(temporal_address)
    await ensure_sync_schedule(client, task_queue, cron, time_zone)
    click.echo("Sync schedule is in place.")


async def _prune(
    retention_days: int, temporal_address: str, task_queue: str
) -> Optional[int]:
    client = await _connect(temporal_address)
    return await client.execute_workflow(
        PruneViewHistoryWorkflow.run,
        retention_days,
        id=f"viewcount-prune-{retention_days}d",
        task_queue=task_queue,
    )


@click.group()
@click.option(
    "--temporal-address",
    default=None,
    help="Temporal server address (defaults to TEMPORAL_ADDRESS env var "
    "or localhost:7233)",
)
@click.option(
    "--task-queue",
    default=None,
    help="Task queue (defaults to VIEWCOUNT_TASK_QUEUE env var or "
    f"{DEFAULT_TASK_QUEUE})",
)
@click.pass_context
def main(
    ctx: click.Context,
    temporal_address: Optional[str],
    task_queue: Optional[str],
) -> None:
    """View count tracker commands."""
    ctx.ensure_object(dict)
    ctx.obj["temporal_address"] = temporal_address or os.environ.get(
        "TEMPORAL_ADDRESS", "localhost:7233"
    )
    ctx.obj["task_queue"] = task_queue or os.environ.get(
        "VIEWCOUNT_TASK_QUEUE", DEFAULT_TASK_QUEUE
    )


@main.command()
@click.argument("external_ids", nargs=-1)
@click.pass_context
def trigger(ctx: click.Context, external_ids: Tuple[str, ...]) -> None:
    """Run one sync now. Without ids the configured targets are used."""
    try:
        ok = asyncio.run(
            _trigger_sync(
                external_ids,
                ctx.obj["temporal_address"],
                ctx.obj["task_queue"],
            )
        )
    except Exception as e:
        logger.error(f"Sync trigger failed: {str(e)}", exc_info=True)
        click.echo(f"Sync trigger failed: {str(e)}", err=True)
        sys.exit(1)
    if not ok:
        sys.exit(1)


@main.command()
@click.option("--cron", default=None, help="Cron expression for the sync")
@click.option(
    "--time-zone", default=None, help="Time zone for the cron expression"
)
@click.pass_context
def schedule(
    ctx: click.Context, cron: Optional[str], time_zone: Optional[str]
) -> None:
    """Create the periodic sync schedule if it does not exist."""
    try:
        asyncio.run(
            _create_schedule(
                ctx.obj["temporal_address"],
                ctx.obj["task_queue"],
                cron,
                time_zone,
            )
        )
    except Exception as e:
        click.echo(f"Failed to create schedule: {str(e)}", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "--retention-days",
    type=click.IntRange(min=1),
    default=90,
    show_default=True,
    help="Keep samples newer than this many days",
)
@click.pass_context
def prune(ctx: click.Context, retention_days: int) -> None:
    """Delete view history older than the retention period."""
    try:
        deleted = asyncio.run(
            _prune(
                retention_days,
                ctx.obj["temporal_address"],
                ctx.obj["task_queue"],
            )
        )
    except Exception as e:
        click.echo(f"Prune failed: {str(e)}", err=True)
        sys.exit(1)
    if deleted is None:
        click.echo("Prune failed!", err=True)
        sys.exit(1)
    click.echo(f"Deleted {deleted} samples.")


if __name__ == "__main__":
    main()
