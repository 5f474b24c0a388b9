"""Entry point for event mutations: fan a change out to every affected user.

``create`` and ``update`` resolve the eligible users, map the event once and
reconcile each user independently.  ``delete`` walks the ledger entries the
event already has, without re-resolving eligibility.  Per-user work runs in a
task group bounded by a semaphore; a failure for one user never affects
another, and the orchestrator itself never raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from teamcal.core.logging import set_org_context
from teamcal.core.metrics import sync_metrics
from teamcal.core.telemetry import get_tracer, tag_sync_span
from teamcal.eligibility import EligibilityResolver
from teamcal.ledger import SyncEntryStore
from teamcal.mapper import EventMappingError, map_event
from teamcal.models import OrgEvent, SyncEntry, SyncOperation
from teamcal.reconciler import ReconcileOutcome, ReconcileResult, SyncReconciler

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


@dataclass
class SyncReport:
    """Outcome of one orchestrator invocation."""

    event_id: str
    operation: SyncOperation
    results: list[ReconcileResult] = field(default_factory=list)
    error: str | None = None

    @property
    def users(self) -> int:
        return len(self.results)

    def counts(self) -> dict[str, int]:
        return dict(Counter(result.outcome.value for result in self.results))

    def outcome_for(self, user_id: str) -> ReconcileOutcome | None:
        for result in self.results:
            if result.user_id == user_id:
                return result.outcome
        return None


class SyncOrchestrator:
    def __init__(
        self,
        resolver: EligibilityResolver,
        reconciler: SyncReconciler,
        ledger: SyncEntryStore,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._resolver = resolver
        self._reconciler = reconciler
        self._ledger = ledger
        self._max_concurrency = max_concurrency

    async def on_event_mutated(self, event: OrgEvent, operation: SyncOperation) -> SyncReport:
        """Propagate a create, update or delete of *event* to users' calendars."""
        operation = SyncOperation(operation)
        set_org_context(event.organization_id)
        report = SyncReport(event_id=event.id, operation=operation)

        with get_tracer().start_as_current_span("teamcal.sync.event_mutated") as span:
            tag_sync_span(
                span,
                event_id=event.id,
                organization_id=event.organization_id,
                operation=operation.value,
            )
            try:
                if operation == SyncOperation.DELETE:
                    report.results = await self._fan_out_delete(event)
                else:
                    report.results = await self._fan_out_upsert(event, operation)
            except EventMappingError as exc:
                logger.warning("Event %s cannot be synced: %s", event.id, exc)
                report.error = str(exc)
            except Exception as exc:
                logger.exception("Calendar sync for event %s aborted", event.id)
                report.error = f"{type(exc).__name__}: {exc}"[:200]

            span.set_attribute("teamcal.users", report.users)
            sync_metrics.record_fanout(operation.value, report.users)
            for result in report.results:
                sync_metrics.record_outcome(operation.value, result.outcome.value)

        logger.info(
            "Calendar sync finished: event_id=%s operation=%s users=%d outcomes=%s",
            event.id,
            operation.value,
            report.users,
            report.counts(),
        )
        return report

    async def on_series_created(self, events: Iterable[OrgEvent]) -> list[SyncReport]:
        """Sync each persisted instance of a recurring series as a create."""
        return [
            await self.on_event_mutated(instance, SyncOperation.CREATE) for instance in events
        ]

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _fan_out_upsert(
        self, event: OrgEvent, operation: SyncOperation
    ) -> list[ReconcileResult]:
        wire = map_event(event)
        user_ids = sorted(await self._resolver.resolve(event, event.organization_id))
        if not user_ids:
            logger.info("No eligible users for event %s", event.id)
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(user_id: str) -> ReconcileResult:
            async with semaphore:
                try:
                    return await self._reconciler.reconcile(
                        event_id=event.id,
                        organization_id=event.organization_id,
                        user_id=user_id,
                        operation=operation,
                        wire=wire,
                    )
                except Exception as exc:
                    return _isolated_failure(event.id, user_id, exc)

        return await _gather(_one(user_id) for user_id in user_ids)

    async def _fan_out_delete(self, event: OrgEvent) -> list[ReconcileResult]:
        entries = await self._ledger.list_for_event(event.id)
        if not entries:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(entry: SyncEntry) -> ReconcileResult:
            async with semaphore:
                try:
                    return await self._reconciler.delete_entry(entry)
                except Exception as exc:
                    return _isolated_failure(event.id, entry.user_id, exc)

        return await _gather(_one(entry) for entry in entries)


async def _gather(coros: Iterable) -> list[ReconcileResult]:
    tasks = []
    async with asyncio.TaskGroup() as group:
        for coro in coros:
            tasks.append(group.create_task(coro))
    return [task.result() for task in tasks]


def _isolated_failure(event_id: str, user_id: str, exc: Exception) -> ReconcileResult:
    logger.exception("Unexpected error syncing event_id=%s for user_id=%s", event_id, user_id)
    return ReconcileResult(
        user_id=user_id,
        outcome=ReconcileOutcome.FAILED,
        error=f"{type(exc).__name__}: {exc}"[:200],
    )
