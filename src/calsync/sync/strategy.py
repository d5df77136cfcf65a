"""Full vs. incremental sync selection and the sync-cursor lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from calsync.models import Calendar, SyncStatus, utcnow
from calsync.storage.base import CalendarStore

DEFAULT_FULL_SYNC_MAX_AGE = timedelta(hours=24)


@dataclass(frozen=True)
class FullSync:
    """Re-fetch the bounded time window and re-establish a baseline."""

    is_full = True
    name = "full"


@dataclass(frozen=True)
class IncrementalSync:
    """Fetch only changes since ``cursor``."""

    cursor: str
    is_full = False
    name = "incremental"


@dataclass(frozen=True)
class RecoveryFullSync:
    """Full sync forced by the provider rejecting the stored cursor."""

    is_full = True
    name = "recovery"


SyncMode = FullSync | IncrementalSync | RecoveryFullSync


def should_full_sync(
    calendar: Calendar,
    force: bool,
    *,
    now: datetime | None = None,
    max_age: timedelta = DEFAULT_FULL_SYNC_MAX_AGE,
) -> bool:
    """Decide whether *calendar* needs a full pass.

    Checked in order: forced, never synced, no cursor, and a last full
    sync that is missing or older than *max_age*.
    """
    if force:
        return True
    if calendar.sync_status == SyncStatus.never_synced:
        return True
    if not calendar.sync_cursor:
        return True
    if calendar.last_full_sync_at is None:
        return True
    current = now if now is not None else utcnow()
    return current - calendar.last_full_sync_at > max_age


def select_mode(
    calendar: Calendar,
    force: bool,
    *,
    now: datetime | None = None,
    max_age: timedelta = DEFAULT_FULL_SYNC_MAX_AGE,
) -> SyncMode:
    if should_full_sync(calendar, force, now=now, max_age=max_age):
        return FullSync()
    assert calendar.sync_cursor is not None
    return IncrementalSync(cursor=calendar.sync_cursor)


class SyncStrategySelector:
    """Selects the sync mode for a calendar and owns its stored cursor."""

    def __init__(
        self,
        *,
        store: CalendarStore,
        full_sync_max_age: timedelta = DEFAULT_FULL_SYNC_MAX_AGE,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._full_sync_max_age = full_sync_max_age
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def select(self, calendar: Calendar, force: bool = False) -> SyncMode:
        return select_mode(calendar, force, now=self._clock(), max_age=self._full_sync_max_age)

    async def begin(self, calendar: Calendar, mode: SyncMode) -> None:
        """Clear the stored cursor before a full pass fetches anything."""
        if mode.is_full and calendar.sync_cursor is not None:
            await self._store.clear_sync_cursor(calendar.id)
            calendar.sync_cursor = None

    async def invalidate(self, calendar: Calendar) -> RecoveryFullSync:
        """Drop a cursor the provider rejected and switch to a recovery pass."""
        self._logger.warning(
            "Sync cursor for calendar %s (%s) was rejected; running recovery full sync",
            calendar.id,
            calendar.source_id,
        )
        await self._store.clear_sync_cursor(calendar.id)
        calendar.sync_cursor = None
        return RecoveryFullSync()

    async def record_success(
        self,
        calendar: Calendar,
        mode: SyncMode,
        next_cursor: str | None,
    ) -> None:
        """Store the pass outcome; this is the last write of every pass."""
        now = self._clock()
        status = SyncStatus.full_sync_complete if mode.is_full else SyncStatus.incremental_sync
        last_full = now if mode.is_full else None
        await self._store.update_sync_state(
            calendar.id,
            sync_status=status,
            sync_cursor=next_cursor,
            last_full_sync_at=last_full,
            last_checked_at=now,
        )
        calendar.sync_status = status
        calendar.sync_cursor = next_cursor
        if last_full is not None:
            calendar.last_full_sync_at = last_full
        calendar.last_checked_at = now
