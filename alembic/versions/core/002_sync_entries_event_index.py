"""sync_entries_event_index

Revision ID: core_002
Revises: core_001
Create Date: 2026-05-04 09:30:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_002"
down_revision = "core_001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Delete fan-out reads every live entry of one event.
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_event_calendar_entries_event_live
        ON event_calendar_entries (event_id)
        WHERE sync_status <> 'deleted'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_event_calendar_entries_event_live")
