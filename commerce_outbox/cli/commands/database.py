"""Database management commands.

Example:
    # Check connectivity and create missing tables (development)
    commerce-outbox db init --create-tables

    # Apply all pending migrations
    commerce-outbox db upgrade
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from commerce_outbox.cli.utils import coro, error, info, success
from commerce_outbox.core.settings import get_db_settings

if TYPE_CHECKING:
    from alembic.config import Config


def _alembic_config(config_path: str) -> Config:
    from alembic.config import Config

    path = Path(config_path)
    if not path.exists():
        error(f"Alembic config not found: {path}")
        sys.exit(1)
    return Config(str(path))


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@click.option("--create-tables", is_flag=True, help="Create missing tables from the models")
@coro
async def init(create_tables: bool) -> None:
    """Verify database connectivity, optionally creating tables."""
    from commerce_outbox.infra.database import check_database, close_database, ensure_tables

    db_settings = get_db_settings()
    info(f"Connecting to: {db_settings.database_url.split('@')[-1]}")

    try:
        status = await check_database()
        if not status["healthy"]:
            error(f"Failed to connect to database: {status['error']}")
            sys.exit(1)
        success("Database connected successfully!")

        if create_tables:
            await ensure_tables()
            success("Tables created")
    finally:
        await close_database()


@db.command()
@click.argument("revision", default="head")
@click.option("--config", "config_path", default="alembic.ini", help="Path to alembic.ini")
def upgrade(revision: str, config_path: str) -> None:
    """Apply migrations up to REVISION (default: head)."""
    from alembic import command

    config = _alembic_config(config_path)
    info(f"Upgrading database to {revision}...")
    try:
        command.upgrade(config, revision)
    except Exception as e:
        error(f"Migration failed: {e}")
        sys.exit(1)
    success("Database upgraded")


@db.command()
@click.option("--config", "config_path", default="alembic.ini", help="Path to alembic.ini")
def current(config_path: str) -> None:
    """Show the current migration revision."""
    from alembic import command

    command.current(_alembic_config(config_path), verbose=True)
