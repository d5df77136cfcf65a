"""Store contracts consumed by the sync engine and the service layer."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from calsync.models import Account, Calendar, CalendarEvent, SyncStatus


class AccountStore(Protocol):
    """Persistence contract for linked provider accounts."""

    async def get(self, user_id: uuid.UUID, provider: str) -> Account | None:
        """Load the account for ``(user_id, provider)``."""
        ...

    async def update_tokens(
        self,
        user_id: uuid.UUID,
        provider: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expiry: datetime | None,
    ) -> None:
        """Persist a refreshed credential in a single write."""
        ...


class CalendarStore(Protocol):
    """Persistence contract for calendars and their events."""

    async def get_calendar(self, calendar_id: uuid.UUID) -> Calendar | None:
        """Load one non-deleted calendar."""
        ...

    async def list_calendars(self, user_id: uuid.UUID) -> list[Calendar]:
        """List a user's non-deleted calendars, oldest first."""
        ...

    async def find_calendar_by_source_id(
        self, user_id: uuid.UUID, source_id: str
    ) -> Calendar | None:
        ...

    async def create_calendar(self, calendar: Calendar) -> Calendar:
        ...

    async def update_calendar(self, calendar_id: uuid.UUID, **fields: Any) -> Calendar | None:
        """Overwrite the given settings columns; None if the calendar is gone."""
        ...

    async def update_sync_state(
        self,
        calendar_id: uuid.UUID,
        *,
        sync_status: SyncStatus,
        sync_cursor: str | None,
        last_full_sync_at: datetime | None,
        last_checked_at: datetime,
    ) -> None:
        """Record the outcome of a successful sync pass."""
        ...

    async def clear_sync_cursor(self, calendar_id: uuid.UUID) -> None:
        ...

    async def soft_delete_calendar(self, calendar_id: uuid.UUID) -> bool:
        """Mark a calendar and its events deleted; return False if nothing matched."""
        ...

    async def list_events(self, calendar_id: uuid.UUID) -> list[CalendarEvent]:
        ...

    async def list_events_in_range(
        self,
        calendar_ids: Sequence[uuid.UUID],
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        """Return events overlapping ``[start, end]`` across the given calendars."""
        ...

    async def create_events(self, events: Sequence[CalendarEvent]) -> int:
        """Insert events, upserting on ``(calendar_id, source_id)``."""
        ...

    async def update_events(self, events: Sequence[CalendarEvent]) -> int:
        ...

    async def delete_event_by_source_id(self, calendar_id: uuid.UUID, source_id: str) -> bool:
        ...
