"""Per-user Google Calendar connections backed by ``calendar_connections``.

Tokens are stored encrypted with :class:`~teamcal.token_cipher.TokenCipher`
and decrypted only on read.  ``get_valid_token`` / ``get_calendar_access``
hand out a usable access token, refreshing it when it is within the safety
buffer of expiry.  Refresh for one user is serialized: concurrent callers
wait on a per-user lock and reuse the token the first caller stored.

A stored token that cannot be decrypted (rotated key, tampered row) is
reported as "no usable token", never raised.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from teamcal.core.metrics import sync_metrics
from teamcal.google_oauth import GoogleOAuthClient, GoogleOAuthError, TokenGrant
from teamcal.models import (
    DEFAULT_TARGET_CALENDAR_ID,
    CalendarAccess,
    CalendarConnection,
    ConnectionStatus,
    ensure_utc,
)
from teamcal.token_cipher import TokenCipher, TokenDecryptError

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "calendar_connections"
_ENTRIES_TABLE = "event_calendar_entries"

REFRESH_BUFFER = timedelta(minutes=5)


def _rows_affected(result: str | None) -> int:
    # asyncpg returns a command tag such as "UPDATE 1" or "DELETE 0".
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0


class CalendarConnectionStore:
    """Async store for calendar connections.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.
    cipher:
        Cipher used for tokens at rest.
    oauth:
        OAuth client used for refresh and revocation.  Without one, expired
        tokens are reported as unusable and left untouched.
    refresh_buffer:
        Tokens expiring within this window are refreshed before use.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        cipher: TokenCipher,
        oauth: GoogleOAuthClient | None = None,
        *,
        refresh_buffer: timedelta = REFRESH_BUFFER,
    ) -> None:
        self.pool = pool
        self._cipher = cipher
        self._oauth = oauth
        self._refresh_buffer = refresh_buffer
        # Entries vanish once no caller holds or waits on the lock.
        self._refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __repr__(self) -> str:
        return f"CalendarConnectionStore(table={_TABLE!r})"

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def store_connection(self, user_id: str, grant: TokenGrant) -> None:
        """Persist the output of a successful authorization handshake.

        Upserts on ``user_id`` and resets ``status`` to ``connected``.  The
        target calendar of an existing connection is preserved.
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {_TABLE}
                    (user_id, google_email, access_token_encrypted,
                     refresh_token_encrypted, token_expires_at, status, last_sync_at)
                VALUES ($1, $2, $3, $4, $5, $6, now())
                ON CONFLICT (user_id) DO UPDATE SET
                    google_email            = EXCLUDED.google_email,
                    access_token_encrypted  = EXCLUDED.access_token_encrypted,
                    refresh_token_encrypted = EXCLUDED.refresh_token_encrypted,
                    token_expires_at        = EXCLUDED.token_expires_at,
                    status                  = EXCLUDED.status,
                    last_sync_at            = EXCLUDED.last_sync_at,
                    updated_at              = now()
                """,
                user_id,
                grant.email,
                self._cipher.encrypt(grant.access_token),
                self._cipher.encrypt(grant.refresh_token),
                ensure_utc(grant.expires_at),
                ConnectionStatus.CONNECTED.value,
            )
        logger.info("Calendar connection stored: user_id=%s email=%s", user_id, grant.email)

    async def update_status(self, user_id: str, status: ConnectionStatus) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"UPDATE {_TABLE} SET status = $2, updated_at = now() WHERE user_id = $1",
                user_id,
                ConnectionStatus(status).value,
            )
        logger.info("Calendar connection status: user_id=%s status=%s", user_id, status)

    async def set_target_calendar(self, user_id: str, calendar_id: str) -> bool:
        """Point future writes at *calendar_id*. Returns False when no connection exists."""
        calendar_id = calendar_id.strip()
        if not calendar_id:
            raise ValueError("calendar_id must be a non-empty string")
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE {_TABLE}
                SET target_calendar_id = $2, updated_at = now()
                WHERE user_id = $1
                """,
                user_id,
                calendar_id,
            )
        return _rows_affected(result) > 0

    async def touch_last_sync(self, user_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"UPDATE {_TABLE} SET last_sync_at = now() WHERE user_id = $1",
                user_id,
            )

    async def disconnect(self, user_id: str) -> bool:
        """Revoke (best effort) and remove *user_id*'s connection and sync entries.

        Returns ``True`` when a connection row was removed.
        """
        connection = await self.get_connection(user_id)
        if connection is not None and self._oauth is not None:
            try:
                await self._oauth.revoke(connection.access_token)
            except GoogleOAuthError as exc:
                # Token may already be revoked; removal proceeds regardless.
                logger.warning("Token revocation failed for user_id=%s: %s", user_id, exc)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(f"DELETE FROM {_ENTRIES_TABLE} WHERE user_id = $1", user_id)
                result = await conn.execute(f"DELETE FROM {_TABLE} WHERE user_id = $1", user_id)
        removed = _rows_affected(result) > 0
        logger.info("Calendar disconnected: user_id=%s removed=%s", user_id, removed)
        return removed

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_connection(self, user_id: str) -> CalendarConnection | None:
        """Load and decrypt *user_id*'s connection, or ``None``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT user_id, google_email, access_token_encrypted,
                       refresh_token_encrypted, token_expires_at, status,
                       target_calendar_id, last_sync_at
                FROM {_TABLE}
                WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        return self._decode_row(row)

    async def list_connected_user_ids(self) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT user_id FROM {_TABLE} WHERE status = $1",
                ConnectionStatus.CONNECTED.value,
            )
        return [str(row["user_id"]) for row in rows]

    async def get_valid_token(self, user_id: str) -> str | None:
        """Return a usable access token for *user_id*, refreshing if needed.

        ``None`` means the user has no connected calendar or the refresh
        failed; in the latter case the connection is marked ``disconnected``.
        """
        access = await self.get_calendar_access(user_id)
        return access.access_token if access is not None else None

    async def get_calendar_access(self, user_id: str) -> CalendarAccess | None:
        """Like :meth:`get_valid_token`, also returning the target calendar."""
        connection = await self.get_connection(user_id)
        if connection is None or connection.status != ConnectionStatus.CONNECTED:
            return None
        if not self._needs_refresh(connection):
            return _access(connection)

        lock = self._lock_for(user_id)
        async with lock:
            # Another caller may have refreshed while we waited.
            connection = await self.get_connection(user_id)
            if connection is None or connection.status != ConnectionStatus.CONNECTED:
                return None
            if not self._needs_refresh(connection):
                return _access(connection)
            return await self._refresh(connection)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(user_id)
        if lock is None:
            lock = self._refresh_locks[user_id] = asyncio.Lock()
        return lock

    def _needs_refresh(self, connection: CalendarConnection) -> bool:
        return datetime.now(UTC) >= ensure_utc(connection.expires_at) - self._refresh_buffer

    async def _refresh(self, connection: CalendarConnection) -> CalendarAccess | None:
        user_id = connection.user_id
        if self._oauth is None:
            logger.warning(
                "Access token for user_id=%s is expired and no OAuth client is configured",
                user_id,
            )
            return None

        try:
            refreshed = await self._oauth.refresh(connection.refresh_token)
        except GoogleOAuthError as exc:
            sync_metrics.record_refresh(False)
            logger.warning("Token refresh failed for user_id=%s: %s", user_id, exc)
            await self.update_status(user_id, ConnectionStatus.DISCONNECTED)
            return None

        sync_metrics.record_refresh(True)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {_TABLE}
                SET access_token_encrypted = $2,
                    token_expires_at       = $3,
                    status                 = $4,
                    updated_at             = now()
                WHERE user_id = $1
                """,
                user_id,
                self._cipher.encrypt(refreshed.access_token),
                ensure_utc(refreshed.expires_at),
                ConnectionStatus.CONNECTED.value,
            )
        logger.debug("Access token refreshed for user_id=%s", user_id)
        return CalendarAccess(
            user_id=user_id,
            access_token=refreshed.access_token,
            calendar_id=connection.target_calendar_id,
        )

    def _decode_row(self, row: Any) -> CalendarConnection | None:
        user_id = str(row["user_id"])
        try:
            access_token = self._cipher.decrypt(row["access_token_encrypted"])
            refresh_token = self._cipher.decrypt(row["refresh_token_encrypted"])
        except TokenDecryptError as exc:
            logger.error("Failed to decrypt stored tokens for user_id=%s: %s", user_id, exc)
            return None
        try:
            status = ConnectionStatus(row["status"])
        except ValueError:
            logger.warning("Unknown connection status %r for user_id=%s", row["status"], user_id)
            status = ConnectionStatus.ERROR
        return CalendarConnection(
            user_id=user_id,
            google_email=row["google_email"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=ensure_utc(row["token_expires_at"]),
            status=status,
            target_calendar_id=row["target_calendar_id"] or DEFAULT_TARGET_CALENDAR_ID,
            last_sync_at=row["last_sync_at"],
        )


def _access(connection: CalendarConnection) -> CalendarAccess:
    return CalendarAccess(
        user_id=connection.user_id,
        access_token=connection.access_token,
        calendar_id=connection.target_calendar_id,
    )
