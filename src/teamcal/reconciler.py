"""Per-(event, user) reconciliation between the ledger and the remote calendar.

State machine (rows: requested operation, columns: current ledger entry):

============  ==============  ==========================  =============  =============
operation     no entry        synced                      failed         deleted
============  ==============  ==========================  =============  =============
create        remote create   no-op                       see below      remote create
update        remote create   remote update (404: create) see below      remote create
delete        no-op           remote delete               see below      no-op
============  ==============  ==========================  =============  =============

A ``failed`` entry that still carries a ``google_event_id`` (a failed update
or delete) is treated like ``synced`` for update and delete, and create
updates it in place instead of inserting a second copy.  A ``failed`` entry
without a remote id behaves like ``deleted``.

A user without a usable access token is skipped.  Remote failures are
recorded as ``failed`` with a redacted ``last_error`` and picked up again by
the next mutation of the source event; they are never raised.  The ledger
write follows the remote call, and a failed ledger write is logged without
undoing the remote change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Protocol

from teamcal.ledger import SyncEntryStore, sanitize_error
from teamcal.models import CalendarAccess, SyncEntry, SyncOperation, SyncStatus, WireEvent
from teamcal.provider import CalendarNotFoundError, CalendarProvider, CalendarProviderError

logger = logging.getLogger(__name__)


class ReconcileOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    RECREATED = "recreated"
    DELETED = "deleted"
    NOOP = "noop"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    user_id: str
    outcome: ReconcileOutcome
    google_event_id: str | None = None
    error: str | None = None


def _has_remote_copy(entry: SyncEntry | None) -> bool:
    return (
        entry is not None
        and entry.sync_status != SyncStatus.DELETED
        and bool(entry.google_event_id)
    )


class AccessSource(Protocol):
    async def get_calendar_access(self, user_id: str) -> CalendarAccess | None: ...

    async def touch_last_sync(self, user_id: str) -> None: ...


class SyncReconciler:
    """Applies one operation for one user and records the outcome."""

    def __init__(
        self,
        connections: AccessSource,
        provider: CalendarProvider,
        ledger: SyncEntryStore,
    ) -> None:
        self._connections = connections
        self._provider = provider
        self._ledger = ledger

    async def reconcile(
        self,
        *,
        event_id: str,
        organization_id: str,
        user_id: str,
        operation: SyncOperation,
        wire: WireEvent | None = None,
    ) -> ReconcileResult:
        operation = SyncOperation(operation)
        entry = await self._ledger.get(event_id, user_id)

        if operation == SyncOperation.DELETE:
            if entry is None:
                return ReconcileResult(user_id, ReconcileOutcome.NOOP)
            return await self.delete_entry(entry)

        if wire is None:
            raise ValueError(f"{operation} requires a mapped event payload")

        if operation == SyncOperation.CREATE and entry is not None:
            if entry.sync_status == SyncStatus.SYNCED:
                return ReconcileResult(user_id, ReconcileOutcome.NOOP, entry.google_event_id)

        access = await self._connections.get_calendar_access(user_id)
        if access is None:
            logger.info("No usable calendar token for user_id=%s; skipping", user_id)
            return ReconcileResult(user_id, ReconcileOutcome.SKIPPED)

        if _has_remote_copy(entry):
            return await self._update(entry, access, wire)

        return await self._create(
            event_id, organization_id, access, wire, on_success=ReconcileOutcome.CREATED
        )

    async def delete_entry(self, entry: SyncEntry) -> ReconcileResult:
        """Apply the delete column of the state machine to *entry*."""
        user_id = entry.user_id
        if not _has_remote_copy(entry):
            return ReconcileResult(user_id, ReconcileOutcome.NOOP, entry.google_event_id)

        access = await self._connections.get_calendar_access(user_id)
        if access is None:
            logger.info("No usable calendar token for user_id=%s during delete", user_id)
            return ReconcileResult(user_id, ReconcileOutcome.SKIPPED, entry.google_event_id)

        calendar_id = entry.google_calendar_id or access.calendar_id
        try:
            await self._provider.delete(access.access_token, calendar_id, entry.google_event_id)
        except CalendarNotFoundError:
            logger.info(
                "Remote event %s already gone for user_id=%s", entry.google_event_id, user_id
            )
        except CalendarProviderError as exc:
            error = sanitize_error(str(exc), (access.access_token,))
            logger.warning("Remote delete failed for user_id=%s: %s", user_id, error)
            await self._record(
                replace(entry, sync_status=SyncStatus.FAILED, last_error=error)
            )
            return ReconcileResult(user_id, ReconcileOutcome.FAILED, entry.google_event_id, error)

        await self._record(replace(entry, sync_status=SyncStatus.DELETED, last_error=None))
        return ReconcileResult(user_id, ReconcileOutcome.DELETED, entry.google_event_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _update(
        self, entry: SyncEntry, access: CalendarAccess, wire: WireEvent
    ) -> ReconcileResult:
        assert entry.google_event_id is not None
        user_id = entry.user_id
        current_calendar = entry.google_calendar_id or access.calendar_id

        if current_calendar != access.calendar_id:
            # Target calendar changed since the copy was made: move it.
            try:
                await self._provider.delete(
                    access.access_token, current_calendar, entry.google_event_id
                )
            except CalendarProviderError as exc:
                logger.warning(
                    "Could not remove old copy from calendar %s for user_id=%s: %s",
                    current_calendar,
                    user_id,
                    sanitize_error(str(exc), (access.access_token,)),
                )
            return await self._create(
                entry.event_id,
                entry.organization_id,
                access,
                wire,
                on_success=ReconcileOutcome.RECREATED,
            )

        try:
            await self._provider.update(
                access.access_token, current_calendar, entry.google_event_id, wire
            )
        except CalendarNotFoundError:
            logger.info(
                "Remote event %s missing for user_id=%s; recreating",
                entry.google_event_id,
                user_id,
            )
            return await self._create(
                entry.event_id,
                entry.organization_id,
                access,
                wire,
                on_success=ReconcileOutcome.RECREATED,
            )
        except CalendarProviderError as exc:
            error = sanitize_error(str(exc), (access.access_token,))
            logger.warning("Remote update failed for user_id=%s: %s", user_id, error)
            await self._record(
                replace(entry, sync_status=SyncStatus.FAILED, last_error=error)
            )
            return ReconcileResult(user_id, ReconcileOutcome.FAILED, entry.google_event_id, error)

        await self._record(
            replace(
                entry,
                sync_status=SyncStatus.SYNCED,
                google_calendar_id=current_calendar,
                last_error=None,
            ),
            touch=True,
        )
        return ReconcileResult(user_id, ReconcileOutcome.UPDATED, entry.google_event_id)

    async def _create(
        self,
        event_id: str,
        organization_id: str,
        access: CalendarAccess,
        wire: WireEvent,
        *,
        on_success: ReconcileOutcome,
    ) -> ReconcileResult:
        user_id = access.user_id
        try:
            remote_id = await self._provider.insert(access.access_token, access.calendar_id, wire)
        except CalendarProviderError as exc:
            error = sanitize_error(str(exc), (access.access_token,))
            logger.warning("Remote create failed for user_id=%s: %s", user_id, error)
            await self._record(
                SyncEntry(
                    event_id=event_id,
                    user_id=user_id,
                    organization_id=organization_id,
                    google_event_id=None,
                    google_calendar_id=access.calendar_id,
                    sync_status=SyncStatus.FAILED,
                    last_error=error,
                )
            )
            return ReconcileResult(user_id, ReconcileOutcome.FAILED, None, error)

        await self._record(
            SyncEntry(
                event_id=event_id,
                user_id=user_id,
                organization_id=organization_id,
                google_event_id=remote_id,
                google_calendar_id=access.calendar_id,
                sync_status=SyncStatus.SYNCED,
            ),
            touch=True,
        )
        return ReconcileResult(user_id, on_success, remote_id)

    async def _record(self, entry: SyncEntry, *, touch: bool = False) -> None:
        try:
            await self._ledger.upsert(entry)
        except Exception:
            # The remote side already changed; the next mutation reconciles again.
            logger.exception(
                "Failed to record sync outcome for event_id=%s user_id=%s (status=%s)",
                entry.event_id,
                entry.user_id,
                entry.sync_status,
            )
            return
        if touch:
            try:
                await self._connections.touch_last_sync(entry.user_id)
            except Exception:
                logger.warning("Failed to update last_sync_at for user_id=%s", entry.user_id)

