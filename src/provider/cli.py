"""Provider core CLI (pcore).

Inspect declared configuration snapshots without touching the cloud.

Usage:
    pcore diff old.yaml new.yaml --kind cluster   # Changed fields, exit 1 if any
    pcore show cluster.yaml --kind cluster        # Validated fields as JSON
    pcore kinds                                   # Known resource kinds
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from .changeset import compute_changes
from .config import ConfigurationError, ProviderConfig
from .logging_setup import setup_logging
from .resources import RESOURCE_TYPES
from .snapshot import SnapshotError, load_snapshot

KIND_CHOICE = click.Choice(sorted(RESOURCE_TYPES))


@click.group()
@click.version_option(version="0.1.0", prog_name="pcore")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON debug logs")
def cli(verbose: bool) -> None:
    """Provider core CLI (pcore).

    Compare and validate declared resource configurations.

    \b
    Quick Start:
        pcore kinds
        pcore show cluster.yaml --kind cluster
        pcore diff old.yaml new.yaml --kind cluster

    Logs go to stderr as JSON, at PROVIDER_LOG_LEVEL unless --verbose.
    """
    try:
        config = ProviderConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(logging.DEBUG if verbose else config.log_level_value, stream=sys.stderr)


@cli.command()
@click.argument("previous", type=click.Path(path_type=Path))
@click.argument("next_", metavar="NEXT", type=click.Path(path_type=Path))
@click.option("--kind", "-k", required=True, type=KIND_CHOICE, help="Resource kind")
def diff(previous: Path, next_: Path, kind: str) -> None:
    """Show the fields that differ between two snapshots.

    Exits 0 when the snapshots declare the same configuration, 1 otherwise.
    """
    try:
        old = load_snapshot(previous, kind)
        new = load_snapshot(next_, kind)
    except SnapshotError as e:
        raise click.ClickException(str(e)) from e

    changes = compute_changes(old, new)
    if not changes:
        click.echo("No changes")
        return

    create_only = RESOURCE_TYPES[kind].create_only_fields
    for name in sorted(changes.names()):
        marker = "  (create-only: requires replacement)" if name in create_only else ""
        click.echo(f"~ {name}{marker}")
    sys.exit(1)


@cli.command()
@click.argument("snapshot", type=click.Path(path_type=Path))
@click.option("--kind", "-k", required=True, type=KIND_CHOICE, help="Resource kind")
def show(snapshot: Path, kind: str) -> None:
    """Validate a snapshot and print its declared fields as JSON."""
    try:
        config = load_snapshot(snapshot, kind)
    except SnapshotError as e:
        raise click.ClickException(str(e)) from e

    click.echo(json.dumps(config.populated(), indent=2, sort_keys=True))


@cli.command()
def kinds() -> None:
    """List resource kinds and their create-only fields."""
    for kind, node_type in sorted(RESOURCE_TYPES.items()):
        create_only = ", ".join(sorted(node_type.create_only_fields)) or "-"
        click.echo(f"{kind:<20} create-only: {create_only}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
