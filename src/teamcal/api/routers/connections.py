"""Per-user calendar connection endpoints.

Tokens are never returned; only connection metadata leaves the service.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from teamcal.api.deps import get_connections, get_provider
from teamcal.api.models import ApiResponse
from teamcal.api.models.calendar import (
    CalendarOption,
    ConnectionResponse,
    TargetCalendarRequest,
)
from teamcal.connections import CalendarConnectionStore
from teamcal.models import CalendarConnection
from teamcal.provider import CalendarProvider, CalendarProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar/connections", tags=["calendar-connections"])


def _to_response(connection: CalendarConnection) -> ConnectionResponse:
    return ConnectionResponse(
        user_id=connection.user_id,
        google_email=connection.google_email,
        status=connection.status,
        target_calendar_id=connection.target_calendar_id,
        token_expires_at=connection.expires_at,
        last_sync_at=connection.last_sync_at,
    )


async def _require_connection(
    store: CalendarConnectionStore, user_id: str
) -> CalendarConnection:
    connection = await store.get_connection(user_id)
    if connection is None:
        raise HTTPException(status_code=404, detail=f"No calendar connection for {user_id}")
    return connection


@router.get("/{user_id}", response_model=ApiResponse[ConnectionResponse])
async def get_connection(
    user_id: str,
    store: CalendarConnectionStore = Depends(get_connections),
) -> ApiResponse[ConnectionResponse]:
    connection = await _require_connection(store, user_id)
    return ApiResponse[ConnectionResponse](data=_to_response(connection))


@router.get("/{user_id}/calendars", response_model=ApiResponse[list[CalendarOption]])
async def list_calendars(
    user_id: str,
    store: CalendarConnectionStore = Depends(get_connections),
    provider: CalendarProvider = Depends(get_provider),
) -> ApiResponse[list[CalendarOption]]:
    """List the calendars the user can write to, for picking a sync target."""
    access = await store.get_calendar_access(user_id)
    if access is None:
        raise HTTPException(status_code=404, detail=f"No usable calendar connection for {user_id}")
    try:
        calendars = await provider.list_calendars(access.access_token)
    except CalendarProviderError as exc:
        logger.warning("Listing calendars for user_id=%s failed: %s", user_id, exc)
        raise HTTPException(status_code=502, detail="Google Calendar request failed") from exc
    options = [
        CalendarOption(id=calendar.id, summary=calendar.summary, primary=calendar.primary)
        for calendar in calendars
    ]
    return ApiResponse[list[CalendarOption]](data=options, meta={"total": len(options)})


@router.put("/{user_id}/target", response_model=ApiResponse[ConnectionResponse])
async def set_target_calendar(
    user_id: str,
    body: TargetCalendarRequest,
    store: CalendarConnectionStore = Depends(get_connections),
) -> ApiResponse[ConnectionResponse]:
    """Point future syncs at another calendar; existing copies move on next update."""
    if not await store.set_target_calendar(user_id, body.calendar_id):
        raise HTTPException(status_code=404, detail=f"No calendar connection for {user_id}")
    connection = await _require_connection(store, user_id)
    return ApiResponse[ConnectionResponse](data=_to_response(connection))


@router.delete("/{user_id}", response_model=ApiResponse[dict])
async def disconnect(
    user_id: str,
    store: CalendarConnectionStore = Depends(get_connections),
) -> ApiResponse[dict]:
    """Revoke the grant and forget the connection and its ledger entries."""
    if not await store.disconnect(user_id):
        raise HTTPException(status_code=404, detail=f"No calendar connection for {user_id}")
    return ApiResponse[dict](data={"user_id": user_id, "disconnected": True})
