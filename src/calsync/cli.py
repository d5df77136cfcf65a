"""Command-line entry points for calsync."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from pathlib import Path

import click
from pydantic import ValidationError

from calsync import __version__
from calsync.app import CalsyncApp, database_from_config
from calsync.config import (
    DEFAULT_CONFIG_FILENAME,
    CalsyncConfig,
    ConfigError,
    load_config,
    parse_config,
)
from calsync.core.logging import configure_logging
from calsync.errors import CalendarSyncError
from calsync.migrations import run_migrations
from calsync.models import CalendarUpdate, CalendarVisibility


def _load(config_path: Path | None) -> CalsyncConfig:
    if config_path is None:
        default = Path(DEFAULT_CONFIG_FILENAME)
        if not default.exists():
            config = parse_config({})
            configure_logging()
            return config
        config_path = default
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging.level, config.logging.format, config.logging.log_file)
    return config


_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help=f"Path to {DEFAULT_CONFIG_FILENAME} (or its directory)",
)


def _parse_instant(value: str, param: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise click.BadParameter(
            f"expected an ISO 8601 timestamp, got {value!r}", param_hint=param
        ) from exc


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """calsync: calendar synchronization engine."""


@cli.command()
@_config_option
def migrate(config_path: Path | None) -> None:
    """Create the database if needed and run migrations to head."""
    config = _load(config_path)
    db = database_from_config(config)

    async def _run() -> None:
        await db.provision()
        await run_migrations(db.sqlalchemy_url)

    asyncio.run(_run())
    click.echo(f"Database {db.db_name} is up to date")


@cli.command()
@click.argument("user_id", type=click.UUID)
@click.option("--force", is_flag=True, help="Sync every remote calendar regardless of freshness")
@_config_option
def sync(user_id: uuid.UUID, force: bool, config_path: Path | None) -> None:
    """Run one sync sweep for USER_ID."""
    config = _load(config_path)

    async def _run() -> bool:
        async with CalsyncApp(config) as service:
            return await service.sync(user_id, force)

    attempted = asyncio.run(_run())
    click.echo("synced" if attempted else "nothing to sync (cached data is current)")


@cli.command("import-ics")
@click.argument("user_id", type=click.UUID)
@click.argument("ics_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "calendar_name", default=None, help="Calendar name override")
@_config_option
def import_ics(
    user_id: uuid.UUID,
    ics_file: Path,
    calendar_name: str | None,
    config_path: Path | None,
) -> None:
    """Import ICS_FILE as a new static calendar for USER_ID."""
    config = _load(config_path)

    async def _run():
        async with CalsyncApp(config) as service:
            return await service.import_ics(user_id, ics_file.read_bytes(), calendar_name)

    try:
        result = asyncio.run(_run())
    except CalendarSyncError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"Imported {result.calendar.summary!r} ({result.calendar.id}): "
        f"{result.events_count} event(s)"
    )


@cli.command()
@click.argument("user_id", type=click.UUID)
@click.option("--start", required=True, help="Window start (ISO 8601)")
@click.option("--end", required=True, help="Window end (ISO 8601)")
@click.option("--force", is_flag=True, help="Force a sync sweep before reading")
@click.option("--viewer", type=click.UUID, default=None, help="Viewer user id (enables redaction)")
@_config_option
def events(
    user_id: uuid.UUID,
    start: str,
    end: str,
    force: bool,
    viewer: uuid.UUID | None,
    config_path: Path | None,
) -> None:
    """Print USER_ID's calendars and events in a window as JSON lines."""
    config = _load(config_path)
    window_start = _parse_instant(start, "--start")
    window_end = _parse_instant(end, "--end")

    async def _run():
        async with CalsyncApp(config) as service:
            return await service.get_events_with_sync(
                user_id, window_start, window_end, force=force, viewer_id=viewer
            )

    try:
        views = asyncio.run(_run())
    except CalendarSyncError as exc:
        raise click.ClickException(str(exc)) from exc
    for view in views:
        click.echo(view.model_dump_json())


@cli.command("update-calendar")
@click.argument("user_id", type=click.UUID)
@click.argument("calendar_id", type=click.UUID)
@click.option("--summary", default=None)
@click.option("--description", default=None, help="Empty string clears it")
@click.option("--time-zone", "time_zone", default=None, help="IANA zone name")
@click.option("--color", default=None, help="Empty string clears it")
@click.option("--visibility", type=click.Choice([v.value for v in CalendarVisibility]))
@click.option("--redaction", "event_redaction", default=None, help="Empty string clears it")
@_config_option
def update_calendar(
    user_id: uuid.UUID,
    calendar_id: uuid.UUID,
    config_path: Path | None,
    **settings: str | None,
) -> None:
    """Change settings of one of USER_ID's calendars and print it as JSON."""
    config = _load(config_path)
    try:
        update = CalendarUpdate(**{k: v for k, v in settings.items() if v is not None})
    except ValidationError as exc:
        raise click.BadParameter(str(exc)) from exc

    async def _run():
        async with CalsyncApp(config) as service:
            return await service.update_calendar(user_id, calendar_id, update)

    try:
        calendar = asyncio.run(_run())
    except CalendarSyncError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(calendar.model_dump_json())
