"""calendar_sync_tables

Revision ID: core_001
Revises:
Create Date: 2026-04-20 12:00:00.000000

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
        CREATE TABLE IF NOT EXISTS calendar_connections (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL UNIQUE,
            google_email TEXT NOT NULL,
            access_token_encrypted TEXT NOT NULL,
            refresh_token_encrypted TEXT NOT NULL,
            token_expires_at TIMESTAMPTZ NOT NULL,
            status TEXT NOT NULL DEFAULT 'connected'
                CHECK (status IN ('connected', 'disconnected', 'error')),
            target_calendar_id TEXT NOT NULL DEFAULT 'primary',
            last_sync_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_calendar_connections_status
        ON calendar_connections (status)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS event_calendar_entries (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            google_event_id TEXT,
            google_calendar_id TEXT,
            sync_status TEXT NOT NULL
                CHECK (sync_status IN ('synced', 'failed', 'deleted')),
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (event_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_event_calendar_entries_user
        ON event_calendar_entries (user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_event_calendar_entries_org
        ON event_calendar_entries (organization_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_sync_preferences (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            sync_general BOOLEAN NOT NULL DEFAULT true,
            sync_game BOOLEAN NOT NULL DEFAULT true,
            sync_meeting BOOLEAN NOT NULL DEFAULT true,
            sync_social BOOLEAN NOT NULL DEFAULT true,
            sync_fundraiser BOOLEAN NOT NULL DEFAULT true,
            sync_philanthropy BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (user_id, organization_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_calendar_sync_preferences_org
        ON calendar_sync_preferences (organization_id)
    """)

    # Owned by the membership directory; created here only when absent so a
    # standalone deployment can resolve roles.
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_organization_roles (
            user_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            role TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (organization_id, user_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS calendar_sync_preferences")
    op.execute("DROP TABLE IF EXISTS event_calendar_entries")
    op.execute("DROP TABLE IF EXISTS calendar_connections")
