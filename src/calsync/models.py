"""Domain models shared by the sync engine, the stores and the service layer."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

GOOGLE_PROVIDER = "google"


class CalendarProvider(StrEnum):
    """Where a calendar's events come from."""

    remote = "remote"
    static = "static"


class CalendarVisibility(StrEnum):
    public = "public"
    private = "private"


class EventVisibility(StrEnum):
    public = "public"
    private = "private"
    inherited = "inherited"


class SyncStatus(StrEnum):
    never_synced = "never_synced"
    full_sync_complete = "full_sync_complete"
    incremental_sync = "incremental_sync"


def utcnow() -> datetime:
    return datetime.now(UTC)


class Account(BaseModel):
    """OAuth credential record for one (user, provider) pair."""

    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    provider: str = GOOGLE_PROVIDER
    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"Account(user_id={self.user_id!s}, provider={self.provider!r}, "
            f"access_token=<REDACTED>, refresh_token=<REDACTED>, expiry={self.expiry!r})"
        )

    __str__ = __repr__


class Calendar(BaseModel):
    """A calendar imported by a user, with its sync state."""

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: uuid.UUID
    source_id: str | None = None
    provider: CalendarProvider = CalendarProvider.remote
    summary: str
    time_zone: str = "UTC"
    description: str | None = None
    color: str | None = None
    visibility: CalendarVisibility = CalendarVisibility.private
    event_redaction: str | None = None

    sync_status: SyncStatus = SyncStatus.never_synced
    sync_cursor: str | None = None
    last_full_sync_at: datetime | None = None
    last_checked_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: datetime | None = None

    @field_validator("source_id", "sync_cursor", "event_redaction")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @property
    def is_remote(self) -> bool:
        return self.provider == CalendarProvider.remote and self.source_id is not None


class CalendarUpdate(BaseModel):
    """User-editable calendar settings. Only fields that were passed are applied.

    Passing an empty ``event_redaction``, ``description`` or ``color`` clears
    it; ``summary``, ``time_zone`` and ``visibility`` cannot be cleared.
    """

    model_config = ConfigDict(extra="forbid")

    summary: str | None = None
    description: str | None = None
    time_zone: str | None = None
    color: str | None = None
    visibility: CalendarVisibility | None = None
    event_redaction: str | None = None

    @field_validator("summary", "time_zone", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("cannot be cleared")
        return value.strip() if isinstance(value, str) else value

    @field_validator("visibility", mode="before")
    @classmethod
    def _required_visibility(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("cannot be cleared")
        return value

    @field_validator("time_zone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone: {value}") from exc
        return value

    @field_validator("description", "color", "event_redaction")
    @classmethod
    def _blank_clears(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CalendarEvent(BaseModel):
    """One event row; ``(calendar_id, source_id)`` is the upsert key."""

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    calendar_id: uuid.UUID
    source_id: str = Field(min_length=1)
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    location: str | None = None
    description: str | None = None
    color: str | None = None
    visibility: EventVisibility = EventVisibility.inherited


class CalendarWithEvents(BaseModel):
    """Read-path view: a calendar and the events that fall in the requested window."""

    calendar: Calendar
    events: list[CalendarEvent] = Field(default_factory=list)


class RemoteCalendar(BaseModel):
    """One entry of the provider's calendar list."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    summary: str = ""
    description: str | None = None
    time_zone: str | None = Field(default=None, alias="timeZone")
    background_color: str | None = Field(default=None, alias="backgroundColor")
    access_role: str | None = Field(default=None, alias="accessRole")
    primary: bool = False
    deleted: bool = False
