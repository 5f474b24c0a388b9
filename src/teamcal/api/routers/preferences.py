"""Per-organization sync preference endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from teamcal.api.deps import get_preferences
from teamcal.api.models import ApiResponse
from teamcal.api.models.calendar import PreferenceUpdate
from teamcal.models import SyncPreference
from teamcal.preferences import SyncPreferenceStore

router = APIRouter(prefix="/api/calendar/preferences", tags=["calendar-preferences"])


async def _current(
    store: SyncPreferenceStore, organization_id: str, user_id: str
) -> SyncPreference:
    preference = await store.get(user_id, organization_id)
    if preference is None:
        # No row means every category is enabled.
        return SyncPreference(user_id=user_id, organization_id=organization_id)
    return preference


@router.get("/{organization_id}/{user_id}", response_model=ApiResponse[SyncPreference])
async def get_preference(
    organization_id: str,
    user_id: str,
    store: SyncPreferenceStore = Depends(get_preferences),
) -> ApiResponse[SyncPreference]:
    preference = await _current(store, organization_id, user_id)
    return ApiResponse[SyncPreference](data=preference)


@router.put("/{organization_id}/{user_id}", response_model=ApiResponse[SyncPreference])
async def update_preference(
    organization_id: str,
    user_id: str,
    body: PreferenceUpdate,
    store: SyncPreferenceStore = Depends(get_preferences),
) -> ApiResponse[SyncPreference]:
    current = await _current(store, organization_id, user_id)
    saved = await store.upsert(body.apply(current))
    return ApiResponse[SyncPreference](data=saved)
