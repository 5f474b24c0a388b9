"""Sync trigger endpoints, called by the event CRUD layer after a mutation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from teamcal.api.deps import get_orchestrator
from teamcal.api.models import ApiResponse
from teamcal.api.models.calendar import (
    SeriesRequest,
    SeriesResponse,
    SyncReportResponse,
    SyncRequest,
)
from teamcal.orchestrator import SyncOrchestrator
from teamcal.recurrence import build_series

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar-sync"])


@router.post("/sync", response_model=ApiResponse[SyncReportResponse])
async def sync_event(
    body: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ApiResponse[SyncReportResponse]:
    """Propagate one event mutation to every affected user's calendar.

    Per-user failures are reported in the body; the request itself succeeds
    whenever the payload is valid.
    """
    report = await orchestrator.on_event_mutated(body.event, body.operation)
    return ApiResponse[SyncReportResponse](data=SyncReportResponse.from_report(report))


@router.post("/series", response_model=ApiResponse[SeriesResponse])
async def create_series(
    body: SeriesRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ApiResponse[SeriesResponse]:
    """Expand a recurring anchor event into concrete instances.

    Raises ``ValueError`` (400) when neither the body nor the anchor event
    carries a recurrence rule.
    """
    instances = build_series(body.event, body.rule)
    reports = []
    if body.sync:
        reports = [
            SyncReportResponse.from_report(report)
            for report in await orchestrator.on_series_created(instances)
        ]
    logger.info("Expanded event %s into %d instances", body.event.id, len(instances))
    return ApiResponse[SeriesResponse](
        data=SeriesResponse(
            recurrence_group_id=instances[0].recurrence_group_id if instances else None,
            instances=instances,
            reports=reports,
        ),
        meta={"total": len(instances)},
    )
