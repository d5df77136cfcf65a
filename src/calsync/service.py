"""Read path and calendar management on top of the sync engine."""

from __future__ import annotations

import calendar as _calendar_math
import logging
import uuid
from datetime import UTC, datetime

from calsync.errors import (
    AccountNotLinkedError,
    CalendarAlreadyImportedError,
    CalendarNotFoundError,
    TimeRangeError,
    sanitize_error_message,
)
from calsync.models import (
    GOOGLE_PROVIDER,
    Calendar,
    CalendarEvent,
    CalendarProvider,
    CalendarUpdate,
    CalendarWithEvents,
    RemoteCalendar,
    SyncStatus,
)
from calsync.storage.base import AccountStore, CalendarStore
from calsync.sync.credentials import AccountTokenSource, CredentialRefresher
from calsync.sync.engine import CalendarSyncEngine
from calsync.sync.fetcher import RemoteEventFetcher
from calsync.sync.ics import StaticImporter, StaticImportResult
from calsync.sync.orchestrator import SyncOrchestrator

DEFAULT_MAX_RANGE_MONTHS = 3


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, _calendar_math.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def validate_time_range(
    start: datetime,
    end: datetime,
    *,
    max_months: int = DEFAULT_MAX_RANGE_MONTHS,
) -> tuple[datetime, datetime]:
    """Reject inverted windows and windows wider than *max_months* calendar months."""
    start = _aware(start)
    end = _aware(end)
    if end < start:
        raise TimeRangeError("end time must not be before start time")
    if end > add_months(start, max_months):
        raise TimeRangeError(f"time range cannot exceed {max_months} months")
    return start, end


def redact_title(title: str, redaction: str) -> str:
    return f"[{redaction}] {title}"


class CalendarService:
    """User-facing calendar operations; the only producer of read-path views."""

    def __init__(
        self,
        *,
        accounts: AccountStore,
        calendars: CalendarStore,
        orchestrator: SyncOrchestrator,
        refresher: CredentialRefresher,
        fetcher: RemoteEventFetcher,
        engine: CalendarSyncEngine,
        importer: StaticImporter,
        max_range_months: int = DEFAULT_MAX_RANGE_MONTHS,
        provider: str = GOOGLE_PROVIDER,
        logger: logging.Logger | None = None,
    ) -> None:
        self._accounts = accounts
        self._calendars = calendars
        self._orchestrator = orchestrator
        self._refresher = refresher
        self._fetcher = fetcher
        self._engine = engine
        self._importer = importer
        self._max_range_months = max_range_months
        self._provider = provider
        self._logger = logger or logging.getLogger(__name__)

    async def get_events_with_sync(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
        force: bool = False,
        viewer_id: uuid.UUID | None = None,
    ) -> list[CalendarWithEvents]:
        """Return the user's calendars with events overlapping ``[start, end]``.

        A sync sweep runs first when anything is stale (or *force* is set);
        sync failures fall back to cached rows. Titles are redacted when
        *viewer_id* is someone other than the owner.

        Raises
        ------
        TimeRangeError
            The window is inverted or wider than the configured month limit.
        """
        start, end = validate_time_range(start, end, max_months=self._max_range_months)

        calendars = await self._calendars.list_calendars(user_id)
        if not calendars:
            return []

        synced = await self._orchestrator.sync_if_needed(user_id, force)
        if synced:
            calendars = await self._calendars.list_calendars(user_id)

        events = await self._calendars.list_events_in_range(
            [calendar.id for calendar in calendars], start, end
        )
        by_calendar: dict[uuid.UUID, list[CalendarEvent]] = {}
        for event in events:
            by_calendar.setdefault(event.calendar_id, []).append(event)

        redact = viewer_id is not None and viewer_id != user_id
        views: list[CalendarWithEvents] = []
        for calendar in calendars:
            calendar_events = by_calendar.get(calendar.id, [])
            if redact and calendar.event_redaction:
                calendar_events = [
                    event.model_copy(
                        update={"title": redact_title(event.title, calendar.event_redaction)}
                    )
                    for event in calendar_events
                ]
            views.append(CalendarWithEvents(calendar=calendar, events=calendar_events))

        self._logger.info(
            "Retrieved %d event(s) across %d calendar(s) for user %s (synced=%s)",
            len(events),
            len(calendars),
            user_id,
            synced,
        )
        return views

    async def sync(self, user_id: uuid.UUID, force: bool = False) -> bool:
        """Run a sync sweep outside the read path (CLI, schedulers)."""
        return await self._orchestrator.sync_if_needed(user_id, force)

    async def _token_source(self, user_id: uuid.UUID) -> AccountTokenSource:
        account = await self._accounts.get(user_id, self._provider)
        if account is None:
            raise AccountNotLinkedError(f"User {user_id} has no linked {self._provider} account")
        account = await self._refresher.ensure_fresh(account)
        return AccountTokenSource(self._refresher, account)

    async def list_remote_calendars(self, user_id: uuid.UUID) -> list[RemoteCalendar]:
        token_source = await self._token_source(user_id)
        return await self._fetcher.list_calendars(token_source)

    async def import_remote_calendar(self, user_id: uuid.UUID, source_id: str) -> Calendar:
        """Import one remote calendar and run its first full pass.

        A failing first pass is logged; the calendar row is kept and picked up
        by the next sweep.
        """
        source_id = source_id.strip()
        if await self._calendars.find_calendar_by_source_id(user_id, source_id) is not None:
            raise CalendarAlreadyImportedError(f"calendar already imported: {source_id}")

        token_source = await self._token_source(user_id)
        remote = next(
            (
                entry
                for entry in await self._fetcher.list_calendars(token_source)
                if entry.id == source_id
            ),
            None,
        )
        if remote is None:
            raise CalendarNotFoundError(f"calendar not found in list: {source_id}")

        calendar = await self._calendars.create_calendar(
            Calendar(
                user_id=user_id,
                source_id=remote.id,
                provider=CalendarProvider.remote,
                summary=remote.summary or remote.id,
                time_zone=remote.time_zone or "UTC",
                description=remote.description,
                color=remote.background_color,
                sync_status=SyncStatus.never_synced,
            )
        )
        self._logger.info("Imported remote calendar %s as %s", source_id, calendar.id)

        try:
            await self._engine.sync_calendar(calendar, token_source, force=True)
        except Exception as exc:
            self._logger.error(
                "Initial sync failed for imported calendar %s: %s",
                calendar.id,
                sanitize_error_message(exc),
            )
        return await self._calendars.get_calendar(calendar.id) or calendar

    async def list_calendars(self, user_id: uuid.UUID) -> list[Calendar]:
        return await self._calendars.list_calendars(user_id)

    async def update_calendar(
        self,
        user_id: uuid.UUID,
        calendar_id: uuid.UUID,
        update: CalendarUpdate,
    ) -> Calendar:
        """Apply user-editable settings such as visibility and event redaction."""
        calendar = await self._calendars.get_calendar(calendar_id)
        if calendar is None or calendar.user_id != user_id:
            raise CalendarNotFoundError(f"calendar not found: {calendar_id}")
        changes = update.changes()
        if not changes:
            return calendar
        updated = await self._calendars.update_calendar(calendar_id, **changes)
        if updated is None:
            raise CalendarNotFoundError(f"calendar not found: {calendar_id}")
        self._logger.info(
            "Updated calendar %s for user %s (%s)",
            calendar_id,
            user_id,
            ", ".join(sorted(changes)),
        )
        return updated

    async def delete_calendar(self, user_id: uuid.UUID, calendar_id: uuid.UUID) -> None:
        calendar = await self._calendars.get_calendar(calendar_id)
        if calendar is None or calendar.user_id != user_id:
            raise CalendarNotFoundError(f"calendar not found: {calendar_id}")
        await self._calendars.soft_delete_calendar(calendar_id)
        self._logger.info("Deleted calendar %s for user %s", calendar_id, user_id)

    async def import_ics(
        self,
        user_id: uuid.UUID,
        ics_text: str | bytes,
        calendar_name: str | None = None,
    ) -> StaticImportResult:
        return await self._importer.import_document(
            user_id, ics_text, calendar_name=calendar_name
        )
