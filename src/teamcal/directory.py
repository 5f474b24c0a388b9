"""Membership directory lookups used by eligibility resolution."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import asyncpg


class Role(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"
    ALUMNI = "alumni"


class DirectoryService(Protocol):
    """Read-only view of who holds which role in an organization."""

    async def get_role(self, organization_id: str, user_id: str) -> str | None: ...

    async def get_roles(
        self, organization_id: str, user_ids: Sequence[str]
    ) -> dict[str, str]: ...


class PostgresDirectory:
    """:class:`DirectoryService` over the ``user_organization_roles`` table."""

    def __init__(self, pool: asyncpg.Pool, *, table: str = "user_organization_roles") -> None:
        self.pool = pool
        self._table = table

    async def get_role(self, organization_id: str, user_id: str) -> str | None:
        async with self.pool.acquire() as conn:
            role = await conn.fetchval(
                f"SELECT role FROM {self._table} WHERE organization_id = $1 AND user_id = $2",
                organization_id,
                user_id,
            )
        return str(role) if role is not None else None

    async def get_roles(self, organization_id: str, user_ids: Sequence[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT user_id, role FROM {self._table}
                WHERE organization_id = $1 AND user_id = ANY($2::text[])
                """,
                organization_id,
                list(user_ids),
            )
        return {str(row["user_id"]): str(row["role"]) for row in rows if row["role"] is not None}
