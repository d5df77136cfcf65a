"""Diff remote event items against local rows into create/update/delete sets."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calsync.config import DEFAULT_PLACEHOLDER_TITLE, UntitledEventPolicy
from calsync.models import Calendar, CalendarEvent, EventVisibility
from calsync.sync.strategy import SyncMode

_VISIBILITY_MAP = {
    "public": EventVisibility.public,
    "private": EventVisibility.private,
    "confidential": EventVisibility.private,
}


@dataclass
class ChangeSet:
    """Classified changes for one calendar pass."""

    calendar_id: uuid.UUID
    mode: SyncMode
    creates: list[CalendarEvent] = field(default_factory=list)
    updates: list[CalendarEvent] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


def coerce_zoneinfo(timezone: str | None) -> ZoneInfo | tzinfo:
    if not timezone:
        return UTC
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def parse_google_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str,
) -> tuple[datetime, bool]:
    """Return ``(instant, all_day)`` for a Google ``start``/``end`` object."""
    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc

        timezone_raw = payload.get("timeZone")
        timezone = (
            timezone_raw.strip()
            if isinstance(timezone_raw, str) and timezone_raw.strip()
            else fallback_timezone
        )
        tz = coerce_zoneinfo(timezone)
        return datetime(parsed_date.year, parsed_date.month, parsed_date.day, tzinfo=tz), True

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _is_cancelled(item: dict[str, Any]) -> bool:
    status = item.get("status")
    return isinstance(status, str) and status.strip().lower() == "cancelled"


class ChangeClassifier:
    """Turns one pass worth of remote items into a :class:`ChangeSet`."""

    def __init__(
        self,
        *,
        untitled_events: UntitledEventPolicy = "skip",
        placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE,
        logger: logging.Logger | None = None,
    ) -> None:
        self._untitled_events = untitled_events
        self._placeholder_title = placeholder_title
        self._logger = logger or logging.getLogger(__name__)

    def classify(
        self,
        items: Iterable[dict[str, Any]],
        local_events: Sequence[CalendarEvent],
        *,
        calendar: Calendar,
        mode: SyncMode,
    ) -> ChangeSet:
        local_by_source_id = {event.source_id: event for event in local_events}
        creates: dict[str, CalendarEvent] = {}
        updates: dict[str, CalendarEvent] = {}
        deletes: dict[str, None] = {}
        skipped = 0

        for item in items:
            source_id = _normalize_optional_text(item.get("id"))
            if source_id is None:
                skipped += 1
                self._logger.debug("Skipping event item without id in calendar %s", calendar.id)
                continue

            if _is_cancelled(item):
                creates.pop(source_id, None)
                updates.pop(source_id, None)
                if source_id in local_by_source_id:
                    deletes[source_id] = None
                continue

            event = self._convert(item, source_id, calendar)
            if event is None:
                skipped += 1
                continue

            deletes.pop(source_id, None)
            existing = local_by_source_id.get(source_id)
            if existing is not None:
                updates[source_id] = event.model_copy(update={"id": existing.id})
            else:
                previous = creates.get(source_id)
                if previous is not None:
                    event = event.model_copy(update={"id": previous.id})
                creates[source_id] = event

        change_set = ChangeSet(
            calendar_id=calendar.id,
            mode=mode,
            creates=list(creates.values()),
            updates=list(updates.values()),
            deletes=list(deletes),
            skipped=skipped,
        )
        self._logger.debug(
            "Classified calendar %s: %d create(s), %d update(s), %d delete(s), %d skipped",
            calendar.id,
            len(change_set.creates),
            len(change_set.updates),
            len(change_set.deletes),
            skipped,
        )
        return change_set

    def _convert(
        self,
        item: dict[str, Any],
        source_id: str,
        calendar: Calendar,
    ) -> CalendarEvent | None:
        title = _normalize_optional_text(item.get("summary"))
        if title is None:
            if self._untitled_events == "skip":
                self._logger.debug("Skipping untitled event %s", source_id)
                return None
            title = self._placeholder_title

        start_payload = item.get("start")
        end_payload = item.get("end")
        if not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
            self._logger.warning("Skipping event %s: missing start/end payloads", source_id)
            return None

        try:
            start, all_day = parse_google_event_boundary(
                start_payload, fallback_timezone=calendar.time_zone
            )
            end, _ = parse_google_event_boundary(
                end_payload, fallback_timezone=calendar.time_zone
            )
        except ValueError as exc:
            self._logger.warning("Skipping event %s: %s", source_id, exc)
            return None

        visibility_raw = _normalize_optional_text(item.get("visibility"))
        return CalendarEvent(
            id=uuid.uuid4(),
            calendar_id=calendar.id,
            source_id=source_id,
            title=title,
            start=start,
            end=end,
            all_day=all_day,
            location=_normalize_optional_text(item.get("location")),
            description=_normalize_optional_text(item.get("description")),
            color=_normalize_optional_text(item.get("colorId")),
            visibility=_VISIBILITY_MAP.get(
                (visibility_raw or "").lower(), EventVisibility.inherited
            ),
        )
