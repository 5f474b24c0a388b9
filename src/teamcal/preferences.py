"""Per-user, per-organization category toggles in ``calendar_sync_preferences``.

A missing row means "sync everything"; callers receive ``None`` and decide.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from teamcal.models import SyncPreference

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TABLE = "calendar_sync_preferences"

_FLAGS = (
    "sync_general",
    "sync_game",
    "sync_meeting",
    "sync_social",
    "sync_fundraiser",
    "sync_philanthropy",
)
_SELECT = f"SELECT user_id, organization_id, {', '.join(_FLAGS)} FROM {_TABLE}"


def _preference_from_row(row: Any) -> SyncPreference:
    # NULL flags in legacy rows count as enabled.
    flags = {flag: row[flag] is not False for flag in _FLAGS}
    return SyncPreference(
        user_id=str(row["user_id"]),
        organization_id=str(row["organization_id"]),
        **flags,
    )


class SyncPreferenceStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, user_id: str, organization_id: str) -> SyncPreference | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"{_SELECT} WHERE user_id = $1 AND organization_id = $2",
                user_id,
                organization_id,
            )
        return _preference_from_row(row) if row is not None else None

    async def get_many(
        self, organization_id: str, user_ids: Sequence[str]
    ) -> dict[str, SyncPreference]:
        """Preferences for *user_ids* in one query; users without a row are absent."""
        if not user_ids:
            return {}
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"{_SELECT} WHERE organization_id = $1 AND user_id = ANY($2::text[])",
                organization_id,
                list(user_ids),
            )
        return {str(row["user_id"]): _preference_from_row(row) for row in rows}

    async def upsert(self, preference: SyncPreference) -> SyncPreference:
        values = [getattr(preference, flag) for flag in _FLAGS]
        assignments = ",\n                    ".join(f"{flag} = EXCLUDED.{flag}" for flag in _FLAGS)
        placeholders = ", ".join(f"${i}" for i in range(3, 3 + len(_FLAGS)))
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {_TABLE}
                    (user_id, organization_id, {", ".join(_FLAGS)})
                VALUES ($1, $2, {placeholders})
                ON CONFLICT (user_id, organization_id) DO UPDATE SET
                    {assignments},
                    updated_at = now()
                """,
                preference.user_id,
                preference.organization_id,
                *values,
            )
        logger.info(
            "Sync preferences saved: user_id=%s organization_id=%s",
            preference.user_id,
            preference.organization_id,
        )
        return preference
