"""Tests for CalendarConnectionStore: decryption, refresh and disconnect."""

from __future__ import annotations

import asyncio
import gc
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from teamcal.connections import CalendarConnectionStore
from teamcal.google_oauth import GoogleOAuthError, RefreshedToken, TokenGrant, TokenRefreshError
from teamcal.models import ConnectionStatus
from teamcal.token_cipher import TokenCipher
from tests.fakes import OTHER_KEY_HEX, make_conn, make_pool

pytestmark = pytest.mark.unit


class _ConnectionTable:
    """Single-row stand-in for ``calendar_connections``."""

    def __init__(self, cipher: TokenCipher, *, expires_in: timedelta, status: str = "connected"):
        self.row: dict | None = {
            "user_id": "u1",
            "google_email": "ada@example.com",
            "access_token_encrypted": cipher.encrypt("ya29.old"),
            "refresh_token_encrypted": cipher.encrypt("1//refresh"),
            "token_expires_at": datetime.now(UTC) + expires_in,
            "status": status,
            "target_calendar_id": "primary",
            "last_sync_at": None,
        }
        self.queries: list[str] = []

    async def fetchrow(self, query: str, user_id: str):
        if self.row is None or self.row["user_id"] != user_id:
            return None
        return dict(self.row)

    async def execute(self, query: str, *args):
        self.queries.append(query)
        if "SET access_token_encrypted" in query:
            self.row.update(
                access_token_encrypted=args[1], token_expires_at=args[2], status=args[3]
            )
        elif "SET status" in query:
            self.row["status"] = args[1]
        elif "DELETE FROM calendar_connections" in query:
            removed, self.row = self.row is not None, None
            return f"DELETE {int(removed)}"
        elif "DELETE FROM" in query:
            return "DELETE 2"
        return "UPDATE 1"


def _oauth(**overrides) -> MagicMock:
    oauth = MagicMock()
    oauth.refresh = overrides.get(
        "refresh",
        AsyncMock(
            return_value=RefreshedToken(
                access_token="ya29.new", expires_at=datetime.now(UTC) + timedelta(hours=1)
            )
        ),
    )
    oauth.revoke = overrides.get("revoke", AsyncMock(return_value=None))
    return oauth


def _store(cipher, table: _ConnectionTable, oauth=None) -> CalendarConnectionStore:
    conn = make_conn(
        fetchrow=AsyncMock(side_effect=table.fetchrow),
        execute=AsyncMock(side_effect=table.execute),
    )
    return CalendarConnectionStore(make_pool(conn), cipher, oauth)


class TestGetConnection:
    async def test_decrypts_tokens(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        connection = await _store(cipher, table).get_connection("u1")
        assert connection.access_token == "ya29.old"
        assert connection.refresh_token == "1//refresh"
        assert connection.status == ConnectionStatus.CONNECTED
        assert "ya29.old" not in repr(connection)

    async def test_missing_row(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        assert await _store(cipher, table).get_connection("nobody") is None

    async def test_undecryptable_tokens_mean_no_connection(self, cipher):
        table = _ConnectionTable(TokenCipher.from_hex(OTHER_KEY_HEX), expires_in=timedelta(hours=1))
        store = _store(cipher, table, _oauth())
        assert await store.get_connection("u1") is None
        assert await store.get_valid_token("u1") is None

    async def test_unknown_status_is_error(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1), status="weird")
        connection = await _store(cipher, table).get_connection("u1")
        assert connection.status == ConnectionStatus.ERROR


class TestGetValidToken:
    async def test_fresh_token_is_returned_without_refresh(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        oauth = _oauth()
        access = await _store(cipher, table, oauth).get_calendar_access("u1")
        assert access.access_token == "ya29.old"
        assert access.calendar_id == "primary"
        oauth.refresh.assert_not_awaited()

    async def test_token_inside_buffer_is_refreshed(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(minutes=2))
        old_expiry = table.row["token_expires_at"]
        oauth = _oauth()

        token = await _store(cipher, table, oauth).get_valid_token("u1")

        assert token == "ya29.new"
        oauth.refresh.assert_awaited_once_with("1//refresh")
        assert cipher.decrypt(table.row["access_token_encrypted"]) == "ya29.new"
        assert table.row["token_expires_at"] > old_expiry
        assert table.row["status"] == "connected"

    async def test_refresh_failure_disconnects(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(minutes=-10))
        oauth = _oauth(refresh=AsyncMock(side_effect=TokenRefreshError("invalid_grant")))

        assert await _store(cipher, table, oauth).get_valid_token("u1") is None
        assert table.row["status"] == "disconnected"

    async def test_expired_without_oauth_client(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(minutes=-10))
        assert await _store(cipher, table, None).get_valid_token("u1") is None
        assert table.row["status"] == "connected"

    async def test_disconnected_connection_is_unusable(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1), status="disconnected")
        oauth = _oauth()
        assert await _store(cipher, table, oauth).get_valid_token("u1") is None
        oauth.refresh.assert_not_awaited()

    async def test_concurrent_callers_refresh_once(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(minutes=1))

        async def _slow_refresh(refresh_token):
            await asyncio.sleep(0.01)
            return RefreshedToken(
                access_token="ya29.new", expires_at=datetime.now(UTC) + timedelta(hours=1)
            )

        oauth = _oauth(refresh=AsyncMock(side_effect=_slow_refresh))
        store = _store(cipher, table, oauth)

        tokens = await asyncio.gather(*(store.get_valid_token("u1") for _ in range(5)))

        assert tokens == ["ya29.new"] * 5
        assert oauth.refresh.await_count == 1

    async def test_refresh_locks_are_released_after_use(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(minutes=1))
        store = _store(cipher, table, _oauth())

        await asyncio.gather(*(store.get_valid_token("u1") for _ in range(3)))
        gc.collect()

        assert "u1" not in store._refresh_locks
        assert len(store._refresh_locks) == 0


class TestWrites:
    async def test_store_connection_encrypts_tokens(self, cipher):
        conn = make_conn()
        store = CalendarConnectionStore(make_pool(conn), cipher)
        grant = TokenGrant(
            access_token="ya29.a",
            refresh_token="1//r",
            expires_at=datetime(2026, 5, 1, 12, 0, tzinfo=UTC),
            email="ada@example.com",
        )

        await store.store_connection("u1", grant)

        args = conn.execute.await_args.args
        assert "ON CONFLICT (user_id)" in args[0]
        assert args[1:3] == ("u1", "ada@example.com")
        assert "ya29.a" not in args and "1//r" not in args
        assert cipher.decrypt(args[3]) == "ya29.a"
        assert cipher.decrypt(args[4]) == "1//r"
        assert args[6] == "connected"

    async def test_set_target_calendar_rejects_blank(self, cipher):
        store = CalendarConnectionStore(make_pool(make_conn()), cipher)
        with pytest.raises(ValueError):
            await store.set_target_calendar("u1", "  ")

    async def test_set_target_calendar_reports_missing_connection(self, cipher):
        conn = make_conn(execute=AsyncMock(return_value="UPDATE 0"))
        store = CalendarConnectionStore(make_pool(conn), cipher)
        assert await store.set_target_calendar("u1", "team@group.calendar.google.com") is False

    async def test_list_connected_user_ids(self, cipher):
        conn = make_conn(fetch=AsyncMock(return_value=[{"user_id": "u1"}, {"user_id": "u2"}]))
        store = CalendarConnectionStore(make_pool(conn), cipher)
        assert await store.list_connected_user_ids() == ["u1", "u2"]
        assert conn.fetch.await_args.args[1] == "connected"


class TestDisconnect:
    async def test_revokes_and_removes(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        oauth = _oauth()
        store = _store(cipher, table, oauth)

        assert await store.disconnect("u1") is True

        oauth.revoke.assert_awaited_once_with("ya29.old")
        assert table.row is None
        assert any("event_calendar_entries" in query for query in table.queries)
        store.pool._conn.transaction.assert_called_once()

    async def test_revoke_failure_does_not_block_removal(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        oauth = _oauth(revoke=AsyncMock(side_effect=GoogleOAuthError("already revoked")))
        assert await _store(cipher, table, oauth).disconnect("u1") is True
        assert table.row is None

    async def test_unknown_user(self, cipher):
        table = _ConnectionTable(cipher, expires_in=timedelta(hours=1))
        table.row = None
        assert await _store(cipher, table, _oauth()).disconnect("u1") is False
