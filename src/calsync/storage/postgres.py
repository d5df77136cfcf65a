"""asyncpg-backed implementations of the account and calendar stores.

Tables are created by the ``core`` Alembic chain (see ``alembic/versions``).
Live rows are those with ``deleted_at IS NULL``; the partial unique indexes on
``(user_id, source_id)`` and ``(calendar_id, source_id)`` only cover live rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import asyncpg

from calsync.models import Account, Calendar, CalendarEvent, SyncStatus


_CALENDAR_COLUMNS = """
    id, user_id, source_id, provider, summary, time_zone, description, color,
    visibility, event_redaction, sync_status, sync_cursor, last_full_sync_at,
    last_checked_at, created_at, updated_at, deleted_at
"""

_EDITABLE_CALENDAR_COLUMNS = frozenset(
    {"summary", "description", "time_zone", "color", "visibility", "event_redaction"}
)

_EVENT_COLUMNS = """
    id, calendar_id, source_id, title, start_at, end_at, all_day, location,
    description, color, visibility
"""

_INSERT_EVENT_SQL = """
    INSERT INTO calendar_events (
        id, calendar_id, source_id, title, start_at, end_at, all_day,
        location, description, color, visibility
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
    ON CONFLICT (calendar_id, source_id) WHERE deleted_at IS NULL
    DO UPDATE SET
        title = EXCLUDED.title,
        start_at = EXCLUDED.start_at,
        end_at = EXCLUDED.end_at,
        all_day = EXCLUDED.all_day,
        location = EXCLUDED.location,
        description = EXCLUDED.description,
        color = EXCLUDED.color,
        visibility = EXCLUDED.visibility,
        updated_at = now()
"""

_UPDATE_EVENT_SQL = """
    UPDATE calendar_events
    SET title = $2,
        start_at = $3,
        end_at = $4,
        all_day = $5,
        location = $6,
        description = $7,
        color = $8,
        visibility = $9,
        updated_at = now()
    WHERE id = $1 AND deleted_at IS NULL
"""


def _calendar_from_row(row: asyncpg.Record) -> Calendar:
    return Calendar(**dict(row))


def _event_from_row(row: asyncpg.Record) -> CalendarEvent:
    data: dict[str, Any] = dict(row)
    data["start"] = data.pop("start_at")
    data["end"] = data.pop("end_at")
    return CalendarEvent(**data)


def _rows_affected(status: str) -> int:
    """Parse the row count out of an asyncpg command status such as ``UPDATE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


class PostgresAccountStore:
    """Account credentials in the ``accounts`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, user_id: uuid.UUID, provider: str) -> Account | None:
        row = await self._pool.fetchrow(
            """
            SELECT user_id, provider, access_token, refresh_token, expiry
            FROM accounts
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            provider,
        )
        if row is None:
            return None
        return Account(**dict(row))

    async def upsert(self, account: Account) -> None:
        """Store the result of the initial account-link flow."""
        await self._pool.execute(
            """
            INSERT INTO accounts (user_id, provider, access_token, refresh_token, expiry)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id, provider) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                expiry = EXCLUDED.expiry,
                updated_at = now()
            """,
            account.user_id,
            account.provider,
            account.access_token,
            account.refresh_token,
            account.expiry,
        )

    async def update_tokens(
        self,
        user_id: uuid.UUID,
        provider: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expiry: datetime | None,
    ) -> None:
        await self._pool.execute(
            """
            UPDATE accounts
            SET access_token = $3, refresh_token = $4, expiry = $5, updated_at = now()
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            provider,
            access_token,
            refresh_token,
            expiry,
        )


class PostgresCalendarStore:
    """Calendars and events in the ``calendars`` / ``calendar_events`` tables."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_calendar(self, calendar_id: uuid.UUID) -> Calendar | None:
        row = await self._pool.fetchrow(
            f"SELECT {_CALENDAR_COLUMNS} FROM calendars WHERE id = $1 AND deleted_at IS NULL",
            calendar_id,
        )
        return _calendar_from_row(row) if row is not None else None

    async def list_calendars(self, user_id: uuid.UUID) -> list[Calendar]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_CALENDAR_COLUMNS}
            FROM calendars
            WHERE user_id = $1 AND deleted_at IS NULL
            ORDER BY created_at, id
            """,
            user_id,
        )
        return [_calendar_from_row(row) for row in rows]

    async def find_calendar_by_source_id(
        self, user_id: uuid.UUID, source_id: str
    ) -> Calendar | None:
        row = await self._pool.fetchrow(
            f"""
            SELECT {_CALENDAR_COLUMNS}
            FROM calendars
            WHERE user_id = $1 AND source_id = $2 AND deleted_at IS NULL
            """,
            user_id,
            source_id,
        )
        return _calendar_from_row(row) if row is not None else None

    async def create_calendar(self, calendar: Calendar) -> Calendar:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO calendars (
                id, user_id, source_id, provider, summary, time_zone, description,
                color, visibility, event_redaction, sync_status, sync_cursor,
                last_full_sync_at, last_checked_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            RETURNING {_CALENDAR_COLUMNS}
            """,
            calendar.id,
            calendar.user_id,
            calendar.source_id,
            str(calendar.provider),
            calendar.summary,
            calendar.time_zone,
            calendar.description,
            calendar.color,
            str(calendar.visibility),
            calendar.event_redaction,
            str(calendar.sync_status),
            calendar.sync_cursor,
            calendar.last_full_sync_at,
            calendar.last_checked_at,
        )
        return _calendar_from_row(row)

    async def update_calendar(self, calendar_id: uuid.UUID, **fields: Any) -> Calendar | None:
        unknown = set(fields) - _EDITABLE_CALENDAR_COLUMNS
        if unknown:
            raise ValueError(f"not editable calendar columns: {sorted(unknown)}")
        if not fields:
            return await self.get_calendar(calendar_id)
        # column names come from the allow-list above, values are bound
        columns = sorted(fields)
        assignments = ", ".join(
            f"{name} = ${index}" for index, name in enumerate(columns, start=2)
        )
        row = await self._pool.fetchrow(
            f"""
            UPDATE calendars SET {assignments}, updated_at = now()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING {_CALENDAR_COLUMNS}
            """,
            calendar_id,
            *(str(fields[name]) if name == "visibility" else fields[name] for name in columns),
        )
        return _calendar_from_row(row) if row is not None else None

    async def update_sync_state(
        self,
        calendar_id: uuid.UUID,
        *,
        sync_status: SyncStatus,
        sync_cursor: str | None,
        last_full_sync_at: datetime | None,
        last_checked_at: datetime,
    ) -> None:
        await self._pool.execute(
            """
            UPDATE calendars
            SET sync_status = $2,
                sync_cursor = $3,
                last_full_sync_at = COALESCE($4, last_full_sync_at),
                last_checked_at = $5,
                updated_at = now()
            WHERE id = $1 AND deleted_at IS NULL
            """,
            calendar_id,
            str(sync_status),
            sync_cursor,
            last_full_sync_at,
            last_checked_at,
        )

    async def clear_sync_cursor(self, calendar_id: uuid.UUID) -> None:
        await self._pool.execute(
            "UPDATE calendars SET sync_cursor = NULL, updated_at = now() WHERE id = $1",
            calendar_id,
        )

    async def soft_delete_calendar(self, calendar_id: uuid.UUID) -> bool:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE calendars SET deleted_at = now(), updated_at = now()
                    WHERE id = $1 AND deleted_at IS NULL
                    """,
                    calendar_id,
                )
                if _rows_affected(status) == 0:
                    return False
                await conn.execute(
                    """
                    UPDATE calendar_events SET deleted_at = now(), updated_at = now()
                    WHERE calendar_id = $1 AND deleted_at IS NULL
                    """,
                    calendar_id,
                )
        return True

    async def list_events(self, calendar_id: uuid.UUID) -> list[CalendarEvent]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM calendar_events
            WHERE calendar_id = $1 AND deleted_at IS NULL
            """,
            calendar_id,
        )
        return [_event_from_row(row) for row in rows]

    async def list_events_in_range(
        self,
        calendar_ids: Sequence[uuid.UUID],
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        if not calendar_ids:
            return []
        rows = await self._pool.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM calendar_events
            WHERE calendar_id = ANY($1::uuid[])
              AND deleted_at IS NULL
              AND end_at >= $2
              AND start_at <= $3
            ORDER BY start_at, id
            """,
            list(calendar_ids),
            start,
            end,
        )
        return [_event_from_row(row) for row in rows]

    async def create_events(self, events: Sequence[CalendarEvent]) -> int:
        if not events:
            return 0
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    _INSERT_EVENT_SQL,
                    [
                        (
                            event.id,
                            event.calendar_id,
                            event.source_id,
                            event.title,
                            event.start,
                            event.end,
                            event.all_day,
                            event.location,
                            event.description,
                            event.color,
                            str(event.visibility),
                        )
                        for event in events
                    ],
                )
        return len(events)

    async def update_events(self, events: Sequence[CalendarEvent]) -> int:
        if not events:
            return 0
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    _UPDATE_EVENT_SQL,
                    [
                        (
                            event.id,
                            event.title,
                            event.start,
                            event.end,
                            event.all_day,
                            event.location,
                            event.description,
                            event.color,
                            str(event.visibility),
                        )
                        for event in events
                    ],
                )
        return len(events)

    async def delete_event_by_source_id(self, calendar_id: uuid.UUID, source_id: str) -> bool:
        status = await self._pool.execute(
            "DELETE FROM calendar_events WHERE calendar_id = $1 AND source_id = $2",
            calendar_id,
            source_id,
        )
        return _rows_affected(status) > 0
