"""Output formatting utilities for CLI commands."""

import json
from typing import Any

import click


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red to stderr."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    """Print a warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    """Print an info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    """Print a header message in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


def key_values(rows: dict[str, Any], *, width: int = 20) -> None:
    """Print aligned ``key: value`` lines."""
    for key, value in rows.items():
        click.echo(f"  {key + ':':<{width}} {'-' if value is None else value}")


def echo_json(data: Any) -> None:
    """Print data as indented JSON; datetimes and UUIDs become strings."""
    click.echo(json.dumps(data, indent=2, default=str))
