"""Main CLI entry point for commerce-outbox management commands."""

import click

from commerce_outbox.cli.commands import database, outbox
from commerce_outbox.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="commerce-outbox")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Commerce Outbox CLI - run and operate the transactional outbox.

    \b
    Command Groups:
      db       Database connectivity and migrations
      outbox   Publisher worker, backlog and quarantine

    \b
    Quick Start:
      commerce-outbox db upgrade              # Apply migrations
      commerce-outbox outbox run              # Run the publisher worker
      commerce-outbox outbox status           # Show backlog
      commerce-outbox outbox requeue --all    # Retry quarantined events
    """
    ctx.ensure_object(dict)


cli.add_command(database.db)
cli.add_command(outbox.outbox)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
