"""Integration tests for the asyncpg stores against a migrated Postgres."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from calsync.models import (
    Account,
    Calendar,
    CalendarEvent,
    CalendarProvider,
    CalendarVisibility,
    SyncStatus,
)
from calsync.storage import PostgresAccountStore, PostgresCalendarStore

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _event(calendar_id: uuid.UUID, source_id: str, day: int, title: str = "Standup"):
    return CalendarEvent(
        calendar_id=calendar_id,
        source_id=source_id,
        title=title,
        start=datetime(2026, 3, day, 9, tzinfo=UTC),
        end=datetime(2026, 3, day, 10, tzinfo=UTC),
    )


async def test_account_tokens_round_trip(provisioned_postgres_pool):
    async with provisioned_postgres_pool() as pool:
        store = PostgresAccountStore(pool)
        user_id = uuid.uuid4()
        await store.upsert(
            Account(user_id=user_id, access_token="a1", refresh_token="r1", expiry=NOW)
        )

        await store.update_tokens(
            user_id,
            "google",
            access_token="a2",
            refresh_token="r1",
            expiry=NOW + timedelta(hours=1),
        )

        account = await store.get(user_id, "google")
        assert account is not None
        assert account.access_token == "a2"
        assert account.expiry == NOW + timedelta(hours=1)
        assert await store.get(user_id, "outlook") is None


async def test_calendar_sync_state_lifecycle(provisioned_postgres_pool):
    async with provisioned_postgres_pool() as pool:
        store = PostgresCalendarStore(pool)
        user_id = uuid.uuid4()
        calendar = await store.create_calendar(
            Calendar(user_id=user_id, source_id="team@example.com", summary="Team")
        )
        assert calendar.sync_status == SyncStatus.never_synced

        await store.update_sync_state(
            calendar.id,
            sync_status=SyncStatus.full_sync_complete,
            sync_cursor="cursor-1",
            last_full_sync_at=NOW,
            last_checked_at=NOW,
        )
        await store.update_sync_state(
            calendar.id,
            sync_status=SyncStatus.incremental_sync,
            sync_cursor="cursor-2",
            last_full_sync_at=None,
            last_checked_at=NOW + timedelta(minutes=5),
        )

        stored = await store.get_calendar(calendar.id)
        assert stored is not None
        assert stored.sync_status == SyncStatus.incremental_sync
        assert stored.sync_cursor == "cursor-2"
        assert stored.last_full_sync_at == NOW
        assert stored.last_checked_at == NOW + timedelta(minutes=5)

        await store.clear_sync_cursor(calendar.id)
        stored = await store.find_calendar_by_source_id(user_id, "team@example.com")
        assert stored is not None
        assert stored.sync_cursor is None


async def test_event_upsert_range_and_delete(provisioned_postgres_pool):
    async with provisioned_postgres_pool() as pool:
        store = PostgresCalendarStore(pool)
        calendar = await store.create_calendar(
            Calendar(user_id=uuid.uuid4(), provider=CalendarProvider.static, summary="Home")
        )

        assert await store.create_events(
            [_event(calendar.id, "a", 2), _event(calendar.id, "b", 20)]
        ) == 2
        # Same source id again updates in place.
        await store.create_events([_event(calendar.id, "a", 2, title="Renamed")])

        events = await store.list_events(calendar.id)
        assert sorted((event.source_id, event.title) for event in events) == [
            ("a", "Renamed"),
            ("b", "Standup"),
        ]

        in_range = await store.list_events_in_range(
            [calendar.id],
            datetime(2026, 3, 1, tzinfo=UTC),
            datetime(2026, 3, 10, tzinfo=UTC),
        )
        assert [event.source_id for event in in_range] == ["a"]

        target = next(event for event in events if event.source_id == "b")
        await store.update_events([target.model_copy(update={"title": "Moved"})])
        assert {event.title for event in await store.list_events(calendar.id)} == {
            "Renamed",
            "Moved",
        }

        assert await store.delete_event_by_source_id(calendar.id, "a") is True
        assert await store.delete_event_by_source_id(calendar.id, "a") is False
        assert [event.source_id for event in await store.list_events(calendar.id)] == ["b"]


async def test_soft_delete_hides_calendar_and_frees_source_id(provisioned_postgres_pool):
    async with provisioned_postgres_pool() as pool:
        store = PostgresCalendarStore(pool)
        user_id = uuid.uuid4()
        calendar = await store.create_calendar(
            Calendar(user_id=user_id, source_id="team@example.com", summary="Team")
        )
        await store.create_events([_event(calendar.id, "a", 2)])

        assert await store.soft_delete_calendar(calendar.id) is True
        assert await store.soft_delete_calendar(calendar.id) is False
        assert await store.get_calendar(calendar.id) is None
        assert await store.list_calendars(user_id) == []
        assert await store.list_events(calendar.id) == []

        again = await store.create_calendar(
            Calendar(user_id=user_id, source_id="team@example.com", summary="Team")
        )
        assert [c.id for c in await store.list_calendars(user_id)] == [again.id]


async def test_update_calendar_settings(provisioned_postgres_pool):
    async with provisioned_postgres_pool() as pool:
        store = PostgresCalendarStore(pool)
        calendar = await store.create_calendar(
            Calendar(user_id=uuid.uuid4(), source_id="team@example.com", summary="Team")
        )

        updated = await store.update_calendar(
            calendar.id,
            event_redaction="Busy",
            visibility=CalendarVisibility.public,
            time_zone="Europe/Paris",
        )

        assert updated is not None
        assert updated.event_redaction == "Busy"
        assert updated.visibility == CalendarVisibility.public
        assert updated.time_zone == "Europe/Paris"
        assert updated.summary == "Team"
        assert updated.updated_at >= calendar.updated_at

        with pytest.raises(ValueError, match="sync_cursor"):
            await store.update_calendar(calendar.id, sync_cursor="forged")

        await store.soft_delete_calendar(calendar.id)
        assert await store.update_calendar(calendar.id, summary="Gone") is None
