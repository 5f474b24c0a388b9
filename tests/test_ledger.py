"""Tests for the sync ledger store and error sanitization."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from teamcal.ledger import MAX_ERROR_LENGTH, SyncEntryStore, sanitize_error
from teamcal.models import SyncStatus
from tests.fakes import make_conn, make_entry, make_pool

pytestmark = pytest.mark.unit


def _row(**overrides) -> dict:
    row = {
        "event_id": "evt-1",
        "user_id": "u1",
        "organization_id": "org-1",
        "google_event_id": "remote-1",
        "google_calendar_id": "primary",
        "sync_status": "synced",
        "last_error": None,
        "updated_at": datetime(2026, 3, 1, tzinfo=UTC),
    }
    row.update(overrides)
    return row


class TestSanitizeError:
    def test_known_secret_is_replaced(self):
        message = sanitize_error("call with ya29.secret failed", ["ya29.secret", None])
        assert message == "call with [REDACTED] failed"

    def test_key_value_pairs(self):
        message = sanitize_error("refresh_token=1//abc&client_secret=xyz rest")
        assert "1//abc" not in message and "xyz" not in message
        assert "refresh_token=[REDACTED]" in message

    def test_json_pairs(self):
        message = sanitize_error('{"access_token": "ya29.leak", "scope": "calendar"}')
        assert "ya29.leak" not in message
        assert '"scope": "calendar"' in message

    def test_bearer_header(self):
        assert sanitize_error("Authorization: Bearer ya29.x.y") == (
            "Authorization: Bearer [REDACTED]"
        )

    def test_whitespace_and_length(self):
        message = sanitize_error("a\n\n  b " + "x" * 500)
        assert message.startswith("a b ")
        assert len(message) == MAX_ERROR_LENGTH


class TestSyncEntryStore:
    async def test_get_maps_row(self):
        conn = make_conn(fetchrow=AsyncMock(return_value=_row(sync_status="failed")))
        entry = await SyncEntryStore(make_pool(conn)).get("evt-1", "u1")
        assert entry.sync_status == SyncStatus.FAILED
        assert entry.google_event_id == "remote-1"

    async def test_get_missing(self):
        assert await SyncEntryStore(make_pool(make_conn())).get("evt-1", "u1") is None

    async def test_upsert_is_keyed_on_event_and_user(self):
        conn = make_conn()
        entry = make_entry("u1", sync_status=SyncStatus.FAILED, last_error="e" * 400)

        await SyncEntryStore(make_pool(conn)).upsert(entry)

        query, *args = conn.execute.await_args.args
        assert "ON CONFLICT (event_id, user_id)" in query
        assert args[:5] == ["evt-1", "u1", "org-1", "g-u1", "primary"]
        assert args[5] == "failed"
        assert len(args[6]) == MAX_ERROR_LENGTH

    async def test_list_for_event_hides_deleted_by_default(self):
        conn = make_conn(fetch=AsyncMock(return_value=[_row(), _row(user_id="u2")]))
        store = SyncEntryStore(make_pool(conn))

        entries = await store.list_for_event("evt-1")
        assert [entry.user_id for entry in entries] == ["u1", "u2"]
        assert "sync_status <> 'deleted'" in conn.fetch.await_args.args[0]

        await store.list_for_event("evt-1", include_deleted=True)
        assert "deleted" not in conn.fetch.await_args.args[0]

    async def test_list_for_user_with_status(self):
        conn = make_conn(fetch=AsyncMock(return_value=[_row(sync_status="failed")]))
        entries = await SyncEntryStore(make_pool(conn)).list_for_user(
            "u1", status=SyncStatus.FAILED
        )
        assert len(entries) == 1
        assert conn.fetch.await_args.args[1:] == ("u1", "failed")

    async def test_delete_for_user_counts_rows(self):
        conn = make_conn(execute=AsyncMock(return_value="DELETE 3"))
        assert await SyncEntryStore(make_pool(conn)).delete_for_user("u1") == 3
