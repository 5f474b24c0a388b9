"""CLI for teamcal: run the sync service and manage its schema."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path

import click
import uvicorn

from teamcal import __version__
from teamcal.config import ConfigError, SyncConfig, load_config
from teamcal.db import Database
from teamcal.models import OccurrenceType, RecurrenceRule
from teamcal.recurrence import expand

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to teamcal.toml (or its directory). Defaults to $TEAMCAL_CONFIG or ./teamcal.toml",
)


def _load_or_exit(config_path: Path | None) -> SyncConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """teamcal: sync organization events into members' Google Calendars."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")


@cli.command()
@_config_option
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", type=int, default=None, help="Bind port (overrides config)")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the sync API server."""
    from teamcal.api.app import create_app

    config = _load_or_exit(config_path)
    app = create_app(config=config)
    bind_host = host or config.host
    bind_port = port or config.port
    click.echo(f"Starting teamcal on {bind_host}:{bind_port}")
    uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)


@cli.command()
@_config_option
@click.option("--provision", is_flag=True, help="Create the database first if it is missing")
@click.option("--revision", default="heads", show_default=True, help="Target revision")
def migrate(config_path: Path | None, provision: bool, revision: str) -> None:
    """Apply database migrations."""
    from teamcal.migrations import run_migrations

    config = _load_or_exit(config_path)
    database = Database.from_env(config.db_name)
    if provision:
        asyncio.run(database.provision())
    run_migrations(database.url, revision=revision)
    click.echo(f"Database {database.db_name} migrated to {revision}")


@cli.command("check-config")
@_config_option
def check_config(config_path: Path | None) -> None:
    """Validate configuration and print a redacted summary."""
    config = _load_or_exit(config_path)
    click.echo(f"{'Listen':<22} {config.host}:{config.port}")
    click.echo(f"{'Database':<22} {config.db_name or '(from environment)'}")
    click.echo(f"{'Google OAuth':<22} {'configured' if config.google.configured else 'MISSING'}")
    click.echo(f"{'Max concurrency':<22} {config.sync.max_concurrency}")
    click.echo(f"{'Request timeout (s)':<22} {config.sync.request_timeout_s}")
    click.echo(f"{'Log':<22} {config.logging.level} / {config.logging.format}")


@cli.command("expand")
@click.option("--start", "start", required=True, help="Anchor start, ISO 8601 with offset")
@click.option("--end", "end", default=None, help="Anchor end, ISO 8601 with offset")
@click.option(
    "--type",
    "occurrence_type",
    type=click.Choice([t.value for t in OccurrenceType]),
    required=True,
)
@click.option("--weekday", "weekdays", type=click.IntRange(0, 6), multiple=True,
              help="Weekday for weekly rules, 0 = Sunday (repeatable)")
@click.option("--day-of-month", type=click.IntRange(1, 31), default=None)
@click.option("--until", default=None, help="Last date (inclusive), YYYY-MM-DD")
def expand_cmd(
    start: str,
    end: str | None,
    occurrence_type: str,
    weekdays: tuple[int, ...],
    day_of_month: int | None,
    until: str | None,
) -> None:
    """Preview the instances a recurrence rule produces, as JSON."""
    try:
        rule = RecurrenceRule(
            occurrence_type=OccurrenceType(occurrence_type),
            day_of_week=frozenset(weekdays) or None,
            day_of_month=day_of_month,
            recurrence_end_date=date.fromisoformat(until) if until else None,
        )
        anchor_start = datetime.fromisoformat(start)
        anchor_end = datetime.fromisoformat(end) if end else None
        occurrences = expand(anchor_start, anchor_end, rule)
    except ValueError as exc:
        click.echo(f"Invalid rule: {exc}", err=True)
        sys.exit(1)

    payload = [
        {
            "index": occurrence.index,
            "start": occurrence.start.isoformat(),
            "end": occurrence.end.isoformat() if occurrence.end else None,
        }
        for occurrence in occurrences
    ]
    click.echo(json.dumps(payload, indent=2))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
