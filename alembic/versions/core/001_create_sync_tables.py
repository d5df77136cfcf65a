"""create_sync_tables

Revision ID: core_001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            user_id UUID NOT NULL,
            provider TEXT NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            expiry TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (user_id, provider)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendars (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            source_id TEXT,
            provider TEXT NOT NULL DEFAULT 'remote'
                CHECK (provider IN ('remote', 'static')),
            summary TEXT NOT NULL,
            time_zone TEXT NOT NULL DEFAULT 'UTC',
            description TEXT,
            color TEXT,
            visibility TEXT NOT NULL DEFAULT 'private'
                CHECK (visibility IN ('public', 'private')),
            event_redaction TEXT,
            sync_status TEXT NOT NULL DEFAULT 'never_synced'
                CHECK (sync_status IN ('never_synced', 'full_sync_complete', 'incremental_sync')),
            sync_cursor TEXT,
            last_full_sync_at TIMESTAMPTZ,
            last_checked_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            deleted_at TIMESTAMPTZ
        )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_calendars_user_source_live
        ON calendars (user_id, source_id)
        WHERE deleted_at IS NULL AND source_id IS NOT NULL
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_calendars_user_live
        ON calendars (user_id)
        WHERE deleted_at IS NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            calendar_id UUID NOT NULL REFERENCES calendars(id),
            source_id TEXT NOT NULL,
            title TEXT NOT NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            all_day BOOLEAN NOT NULL DEFAULT false,
            location TEXT,
            description TEXT,
            color TEXT,
            visibility TEXT NOT NULL DEFAULT 'inherited'
                CHECK (visibility IN ('public', 'private', 'inherited')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            deleted_at TIMESTAMPTZ
        )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_calendar_events_calendar_source_live
        ON calendar_events (calendar_id, source_id)
        WHERE deleted_at IS NULL
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_calendar_events_range
        ON calendar_events (calendar_id, start_at, end_at)
        WHERE deleted_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS calendar_events")
    op.execute("DROP TABLE IF EXISTS calendars")
    op.execute("DROP TABLE IF EXISTS accounts")
