"""Outbox publisher and quarantine commands.

Example:
    # Run the publisher as a dedicated worker process
    commerce-outbox outbox run

    # Inspect the backlog
    commerce-outbox outbox status --format json

    # Requeue quarantined events after fixing a handler
    commerce-outbox outbox quarantined
    commerce-outbox outbox requeue --all
"""

from __future__ import annotations

import asyncio
import signal
import sys
from uuid import UUID

import click

from commerce_outbox.cli.utils import (
    coro,
    echo_json,
    error,
    header,
    info,
    key_values,
    success,
    warning,
)
from commerce_outbox.core.events.registry import event_registry, import_handler_modules
from commerce_outbox.core.exceptions import RegistryConfigurationError
from commerce_outbox.core.settings import get_outbox_settings
from commerce_outbox.infra.database import close_database, get_async_session
from commerce_outbox.infra.events.outbox.repository import OutboxRepository


def _load_registry(*, strict: bool | None = None) -> None:
    """Import handler modules and validate the registry, exiting on errors."""
    settings = get_outbox_settings()
    try:
        import_handler_modules(settings.handler_modules)
        event_registry.validate(strict=settings.strict_registry if strict is None else strict)
    except RegistryConfigurationError as e:
        error(str(e))
        sys.exit(1)


@click.group(name="outbox")
def outbox() -> None:
    """Transactional outbox management commands."""


@outbox.command()
@coro
async def run() -> None:
    """Run the outbox publisher until interrupted (SIGINT/SIGTERM)."""
    from commerce_outbox.infra.events.outbox.processor import (
        start_outbox_processor,
        stop_outbox_processor,
    )

    _load_registry()
    settings = get_outbox_settings()
    if not settings.enabled:
        # A dedicated worker runs regardless of the in-app switch
        settings = settings.model_copy(update={"enabled": True})

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    processor = await start_outbox_processor(settings, registry=event_registry)
    if processor is None:
        error("Outbox processor did not start")
        sys.exit(1)

    info(
        f"Outbox publisher {processor.instance_id} running "
        f"(batch={processor.batch_size}, poll={processor.poll_interval}s)"
    )
    try:
        await stop_event.wait()
    finally:
        await stop_outbox_processor()
        await close_database()
    success("Outbox publisher stopped")


@outbox.command(name="process-once")
@coro
async def process_once() -> None:
    """Claim and deliver a single batch, then exit."""
    from commerce_outbox.infra.events.outbox.processor import OutboxProcessor

    _load_registry()
    try:
        result = await OutboxProcessor.from_settings(registry=event_registry).process_batch()
    finally:
        await close_database()

    key_values(result.as_dict(), width=12)
    if result.failed:
        warning(f"{result.failed} event(s) failed, {result.quarantined} quarantined")
    else:
        success(f"Delivered {result.delivered} event(s)")


@outbox.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@coro
async def status(output_format: str) -> None:
    """Show outbox backlog statistics."""
    max_retries = get_outbox_settings().max_retries
    try:
        async with get_async_session() as session:
            stats = await OutboxRepository().get_stats(session, max_retries=max_retries)
    except Exception as e:
        error(f"Failed to read outbox statistics: {e}")
        sys.exit(1)
    finally:
        await close_database()

    if output_format == "json":
        echo_json({**stats, "max_retries": max_retries})
        return

    header("Outbox Status")
    key_values(
        {
            "Pending": stats["pending"],
            "Processed": stats["processed"],
            "Quarantined": stats["quarantined"],
            "Total": stats["total"],
            "Oldest pending": stats["oldest_pending_at"],
            "Max retries": max_retries,
        }
    )
    if stats["quarantined"]:
        click.echo()
        warning(f"{stats['quarantined']} event(s) need attention: run 'outbox quarantined'")


@outbox.command()
@click.option("--limit", type=click.IntRange(1, 500), default=50, help="Maximum events to list")
@click.option("--offset", type=click.IntRange(0), default=0, help="Events to skip")
@coro
async def quarantined(limit: int, offset: int) -> None:
    """List events excluded from automatic retry."""
    max_retries = get_outbox_settings().max_retries
    try:
        async with get_async_session() as session:
            records = await OutboxRepository().list_quarantined(
                session, max_retries=max_retries, limit=limit, offset=offset
            )
    finally:
        await close_database()

    if not records:
        success("No quarantined events")
        return

    header(f"Quarantined events ({len(records)})")
    for record in records:
        click.echo(f"  {record.id}  {record.event_type}  retries={record.retry_count}")
        click.secho(f"    {record.last_error or 'no error recorded'}", fg="red")


@outbox.command()
@click.argument("event_id", type=click.UUID)
@coro
async def show(event_id: UUID) -> None:
    """Show one outbox event."""
    try:
        async with get_async_session() as session:
            record = await OutboxRepository().get(session, event_id)
    finally:
        await close_database()

    if record is None:
        error(f"Outbox event {event_id} not found")
        sys.exit(1)

    header(f"Outbox event {record.id}")
    key_values(
        {
            "Type": f"{record.event_type} v{record.event_version}",
            "Status": record.status,
            "Occurred at": record.occurred_at,
            "Aggregate": f"{record.aggregate_type}/{record.aggregate_id}",
            "Correlation ID": record.correlation_id,
            "Retries": record.retry_count,
            "Processed at": record.processed_at,
            "Last error": record.last_error,
        }
    )
    click.echo(f"\n  {record.payload}")


@outbox.command()
@click.argument("event_id", type=click.UUID, required=False)
@click.option("--all", "requeue_all", is_flag=True, help="Requeue every quarantined event")
@coro
async def requeue(event_id: UUID | None, requeue_all: bool) -> None:
    """Return a quarantined event (or all of them) to the pending set."""
    if (event_id is None) == (not requeue_all):
        error("Pass exactly one of EVENT_ID or --all")
        sys.exit(2)

    repo = OutboxRepository()
    try:
        async with get_async_session() as session:
            if requeue_all:
                count = await repo.requeue_quarantined(
                    session, max_retries=get_outbox_settings().max_retries
                )
            else:
                count = int(await repo.requeue(session, event_id))
            await session.commit()
    finally:
        await close_database()

    if event_id is not None and not count:
        error(f"Outbox event {event_id} not found, already processed or being delivered")
        sys.exit(1)
    success(f"Requeued {count} event(s)")
