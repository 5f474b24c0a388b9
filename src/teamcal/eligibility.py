"""Decide which users receive a synced copy of an organization event.

A user is eligible when all of the following hold:

1. their calendar connection is ``connected``;
2. they hold a role in the event's organization;
3. the audience admits them: a non-empty ``target_user_ids`` list admits
   exactly those users and overrides ``audience``; otherwise ``members``
   admits members and admins, ``alumni`` admits alumni, and anything else
   (``both``, ``all``, missing, unknown) admits everyone;
4. their preference for the event's category is not switched off.

Resolution never raises.  Lookup failures exclude the users the lookup
covered, so a broken directory results in no sync rather than over-sharing.
When the batched role lookup fails, roles are fetched one user at a time and
only the users whose own lookup fails are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from typing import Protocol

from teamcal.directory import DirectoryService, Role
from teamcal.models import Audience, OrgEvent, SyncPreference
from teamcal.preferences import SyncPreferenceStore

logger = logging.getLogger(__name__)

_MEMBER_ROLES = frozenset({Role.MEMBER.value, Role.ADMIN.value})
_ALUMNI_ROLES = frozenset({Role.ALUMNI.value})


class ConnectedUsers(Protocol):
    async def list_connected_user_ids(self) -> list[str]: ...


def _audience_admits(audience: str | None, role: str) -> bool:
    normalized = (audience or "").strip().lower()
    if normalized == Audience.MEMBERS:
        return role in _MEMBER_ROLES
    if normalized == Audience.ALUMNI:
        return role in _ALUMNI_ROLES
    return True


def is_user_eligible(
    event: OrgEvent,
    user_id: str,
    *,
    connected: bool,
    role: str | None,
    preference: SyncPreference | None,
) -> bool:
    """Pure eligibility predicate for one user."""
    if not connected or not role:
        return False
    if event.target_user_ids:
        if user_id not in event.target_user_ids:
            return False
    elif not _audience_admits(event.audience, role):
        return False
    if preference is None:
        return True
    return preference.allows(event.event_type)


class EligibilityResolver:
    def __init__(
        self,
        connections: ConnectedUsers,
        directory: DirectoryService,
        preferences: SyncPreferenceStore,
    ) -> None:
        self._connections = connections
        self._directory = directory
        self._preferences = preferences

    async def resolve(self, event: OrgEvent, organization_id: str | None = None) -> set[str]:
        """Return the ids of users who should receive *event*."""
        org_id = organization_id or event.organization_id
        try:
            connected = await self._connections.list_connected_user_ids()
        except Exception:
            logger.exception("Failed to list calendar connections for event %s", event.id)
            return set()

        candidates = _narrow(connected, event.target_user_ids)
        if not candidates:
            return set()

        try:
            roles = await self._directory.get_roles(org_id, candidates)
        except Exception:
            logger.warning(
                "Batch role lookup failed for org %s; retrying per user", org_id, exc_info=True
            )
            roles = await self._roles_one_by_one(org_id, candidates)

        members = [user_id for user_id in candidates if roles.get(user_id)]
        if not members:
            return set()

        try:
            preferences = await self._preferences.get_many(org_id, members)
        except Exception:
            logger.exception("Failed to load sync preferences for org %s", org_id)
            return set()

        return {
            user_id
            for user_id in members
            if is_user_eligible(
                event,
                user_id,
                connected=True,
                role=roles.get(user_id),
                preference=preferences.get(user_id),
            )
        }

    async def _roles_one_by_one(self, org_id: str, user_ids: list[str]) -> dict[str, str]:
        """Look up each role separately; a failed lookup excludes only that user."""
        results = await asyncio.gather(
            *(self._directory.get_role(org_id, user_id) for user_id in user_ids),
            return_exceptions=True,
        )
        roles: dict[str, str] = {}
        for user_id, result in zip(user_ids, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Role lookup failed for user_id=%s in org %s: %s", user_id, org_id, result
                )
            elif result:
                roles[user_id] = result
        return roles


def _narrow(connected: Collection[str], target_user_ids: list[str] | None) -> list[str]:
    unique = list(dict.fromkeys(connected))
    if target_user_ids:
        targets = set(target_user_ids)
        return [user_id for user_id in unique if user_id in targets]
    return unique
