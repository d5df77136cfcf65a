"""One-shot import of a static ICS document into a new calendar."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

import icalendar
from pydantic import BaseModel, ConfigDict

from calsync.config import DEFAULT_PLACEHOLDER_TITLE, UntitledEventPolicy
from calsync.errors import ImportValidationError, sanitize_error_message
from calsync.models import (
    Calendar,
    CalendarEvent,
    CalendarProvider,
    EventVisibility,
    SyncStatus,
    utcnow,
)
from calsync.storage.base import CalendarStore
from calsync.sync.classifier import coerce_zoneinfo

UNTITLED_CALENDAR_NAME = "Untitled Calendar"

_CLASS_VISIBILITY = {
    "PUBLIC": EventVisibility.public,
    "PRIVATE": EventVisibility.private,
    "CONFIDENTIAL": EventVisibility.private,
}


class StaticImportResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    calendar: Calendar
    events_count: int
    skipped: int = 0


def _text(component: Any, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized or None


def resolve_calendar_name(document: icalendar.Calendar, explicit: str | None = None) -> str:
    """Pick a display name for an imported document.

    Order: explicit name, ``X-WR-CALNAME``, ``NAME``, ``SUMMARY``, then
    ``PRODID`` unless it is a ``-//vendor//product`` identifier.
    """
    if explicit and explicit.strip():
        return explicit.strip()
    for prop in ("X-WR-CALNAME", "NAME", "SUMMARY"):
        value = _text(document, prop)
        if value:
            return value
    prodid = _text(document, "PRODID")
    if prodid and "//" not in prodid:
        return prodid
    return UNTITLED_CALENDAR_NAME


def _to_instant(prop: Any, fallback_tz: tzinfo) -> tuple[datetime, bool]:
    """Convert a DTSTART/DTEND/RECURRENCE-ID property to ``(instant, all_day)``."""
    value = prop.dt
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tzid = prop.params.get("TZID") if hasattr(prop, "params") else None
            value = value.replace(tzinfo=coerce_zoneinfo(tzid) if tzid else fallback_tz)
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=fallback_tz), True
    raise ValueError(f"unsupported date value {value!r}")


class StaticImporter:
    """Parses one ICS document and populates a new static calendar."""

    def __init__(
        self,
        *,
        store: CalendarStore,
        untitled_events: UntitledEventPolicy = "skip",
        placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._untitled_events = untitled_events
        self._placeholder_title = placeholder_title
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    @staticmethod
    def parse(ics_text: str | bytes) -> icalendar.Calendar:
        if isinstance(ics_text, str):
            ics_text = ics_text.encode("utf-8")
        if not ics_text.strip():
            raise ImportValidationError("ICS document is empty")
        try:
            document = icalendar.Calendar.from_ical(ics_text)
        except (ValueError, IndexError) as exc:
            raise ImportValidationError(
                f"failed to parse ICS document: {sanitize_error_message(exc)}"
            ) from exc
        if not document.walk("VEVENT"):
            raise ImportValidationError("no events found in ICS file")
        return document

    async def import_document(
        self,
        user_id: uuid.UUID,
        ics_text: str | bytes,
        *,
        calendar_name: str | None = None,
    ) -> StaticImportResult:
        document = self.parse(ics_text)

        tz_name = _text(document, "X-WR-TIMEZONE")
        fallback_tz = coerce_zoneinfo(tz_name)
        now = self._clock()
        calendar = await self._store.create_calendar(
            Calendar(
                user_id=user_id,
                source_id=None,
                provider=CalendarProvider.static,
                summary=resolve_calendar_name(document, calendar_name),
                time_zone=tz_name if fallback_tz is not UTC else "UTC",
                description=_text(document, "X-WR-CALDESC"),
                sync_status=SyncStatus.full_sync_complete,
                sync_cursor=None,
                last_full_sync_at=now,
                last_checked_at=now,
            )
        )

        events: dict[str, CalendarEvent] = {}
        skipped = 0
        for component in document.walk("VEVENT"):
            try:
                event = self._convert(component, calendar, fallback_tz)
            except (ValueError, TypeError, AttributeError) as exc:
                skipped += 1
                self._logger.warning(
                    "Skipping ICS event %s: %s",
                    _text(component, "UID"),
                    sanitize_error_message(exc),
                )
                continue
            if event is None:
                skipped += 1
                continue
            events[event.source_id] = event

        events_count = 0
        if events:
            try:
                events_count = await self._store.create_events(list(events.values()))
            except Exception as exc:
                self._logger.error(
                    "Failed to store %d event(s) for imported calendar %s: %s",
                    len(events),
                    calendar.id,
                    sanitize_error_message(exc),
                )

        self._logger.info(
            "Imported static calendar %s (%r): %d event(s), %d skipped",
            calendar.id,
            calendar.summary,
            events_count,
            skipped,
        )
        return StaticImportResult(calendar=calendar, events_count=events_count, skipped=skipped)

    def _convert(
        self,
        component: Any,
        calendar: Calendar,
        fallback_tz: tzinfo,
    ) -> CalendarEvent | None:
        uid = _text(component, "UID")
        if uid is None:
            self._logger.debug("Skipping ICS event without UID")
            return None
        status = _text(component, "STATUS")
        if status is not None and status.upper() == "CANCELLED":
            return None
        title = _text(component, "SUMMARY")
        if title is None:
            if self._untitled_events == "skip":
                self._logger.debug("Skipping untitled ICS event %s", uid)
                return None
            title = self._placeholder_title

        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("missing DTSTART")
        start, all_day = _to_instant(dtstart, fallback_tz)

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            end, _ = _to_instant(dtend, fallback_tz)
        elif duration is not None and isinstance(duration.dt, timedelta):
            end = start + duration.dt
        else:
            end = start + timedelta(days=1) if all_day else start

        source_id = uid
        recurrence_id = component.get("RECURRENCE-ID")
        if recurrence_id is not None:
            instant, _ = _to_instant(recurrence_id, fallback_tz)
            source_id = f"{uid}_{instant.astimezone(UTC).strftime('%Y%m%dT%H%M%SZ')}"

        visibility = _CLASS_VISIBILITY.get(
            (_text(component, "CLASS") or "").upper(), EventVisibility.inherited
        )
        return CalendarEvent(
            calendar_id=calendar.id,
            source_id=source_id,
            title=title,
            start=start,
            end=end,
            all_day=all_day,
            location=_text(component, "LOCATION"),
            description=_text(component, "DESCRIPTION"),
            color=_text(component, "COLOR"),
            visibility=visibility,
        )
