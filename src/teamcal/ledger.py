"""Sync ledger: one ``event_calendar_entries`` row per (event, user).

Every write is an upsert on ``(event_id, user_id)``, so replaying an outcome
is harmless.  Entries are retired to ``deleted`` rather than removed when the
source event goes away; they are only removed when the user disconnects.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from teamcal.models import SyncEntry, SyncStatus

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "event_calendar_entries"

MAX_ERROR_LENGTH = 200

_COLUMNS = (
    "event_id, user_id, organization_id, google_event_id, google_calendar_id, "
    "sync_status, last_error, updated_at"
)


def sanitize_error(message: str, secrets: Iterable[str | None] = ()) -> str:
    """Redact credential values from *message*, normalize whitespace, truncate.

    Known secret strings are replaced verbatim; ``key=value`` and ``"key": "value"``
    pairs for token-like keys and ``Bearer`` credentials are masked by pattern.
    """
    redacted = message
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", redacted)
    return " ".join(redacted.split())[:MAX_ERROR_LENGTH]


def _entry_from_row(row: Any) -> SyncEntry:
    return SyncEntry(
        event_id=str(row["event_id"]),
        user_id=str(row["user_id"]),
        organization_id=str(row["organization_id"]),
        google_event_id=row["google_event_id"],
        google_calendar_id=row["google_calendar_id"],
        sync_status=SyncStatus(row["sync_status"]),
        last_error=row["last_error"],
        updated_at=row["updated_at"],
    )


class SyncEntryStore:
    """Async access to the sync ledger."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, event_id: str, user_id: str) -> SyncEntry | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM {_TABLE} WHERE event_id = $1 AND user_id = $2",
                event_id,
                user_id,
            )
        return _entry_from_row(row) if row is not None else None

    async def upsert(self, entry: SyncEntry) -> None:
        """Insert or replace the entry for ``(entry.event_id, entry.user_id)``."""
        last_error = (
            entry.last_error[:MAX_ERROR_LENGTH] if entry.last_error is not None else None
        )
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {_TABLE}
                    (event_id, user_id, organization_id, google_event_id,
                     google_calendar_id, sync_status, last_error)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (event_id, user_id) DO UPDATE SET
                    organization_id    = EXCLUDED.organization_id,
                    google_event_id    = EXCLUDED.google_event_id,
                    google_calendar_id = EXCLUDED.google_calendar_id,
                    sync_status        = EXCLUDED.sync_status,
                    last_error         = EXCLUDED.last_error,
                    updated_at         = now()
                """,
                entry.event_id,
                entry.user_id,
                entry.organization_id,
                entry.google_event_id,
                entry.google_calendar_id,
                SyncStatus(entry.sync_status).value,
                last_error,
            )
        logger.debug(
            "Sync entry upserted: event_id=%s user_id=%s status=%s",
            entry.event_id,
            entry.user_id,
            entry.sync_status,
        )

    async def list_for_event(
        self, event_id: str, *, include_deleted: bool = False
    ) -> list[SyncEntry]:
        """Entries for *event_id*, ``deleted`` ones excluded unless requested."""
        query = f"SELECT {_COLUMNS} FROM {_TABLE} WHERE event_id = $1"
        if not include_deleted:
            query += f" AND sync_status <> '{SyncStatus.DELETED.value}'"
        query += " ORDER BY user_id"
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, event_id)
        return [_entry_from_row(row) for row in rows]

    async def list_for_user(
        self, user_id: str, *, status: SyncStatus | None = None
    ) -> list[SyncEntry]:
        async with self.pool.acquire() as conn:
            if status is None:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM {_TABLE} WHERE user_id = $1 "
                    "ORDER BY updated_at DESC",
                    user_id,
                )
            else:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS} FROM {_TABLE}
                    WHERE user_id = $1 AND sync_status = $2
                    ORDER BY updated_at DESC
                    """,
                    user_id,
                    SyncStatus(status).value,
                )
        return [_entry_from_row(row) for row in rows]

    async def delete_for_user(self, user_id: str) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(f"DELETE FROM {_TABLE} WHERE user_id = $1", user_id)
        # asyncpg returns a command tag such as "DELETE 3".
        return int(result.split()[-1]) if result else 0
