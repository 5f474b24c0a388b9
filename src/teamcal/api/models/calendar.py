"""Pydantic models for the calendar sync, connection and preference endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from teamcal.models import (
    ConnectionStatus,
    OrgEvent,
    RecurrenceRule,
    SyncOperation,
    SyncPreference,
)
from teamcal.orchestrator import SyncReport


class SyncRequest(BaseModel):
    """Webhook body sent by the event CRUD layer after a mutation."""

    event: OrgEvent
    operation: SyncOperation


class UserSyncResult(BaseModel):
    user_id: str
    outcome: str
    google_event_id: str | None = None
    error: str | None = None


class SyncReportResponse(BaseModel):
    event_id: str
    operation: SyncOperation
    users: int
    counts: dict[str, int]
    results: list[UserSyncResult]
    error: str | None = None

    @classmethod
    def from_report(cls, report: SyncReport) -> SyncReportResponse:
        return cls(
            event_id=report.event_id,
            operation=report.operation,
            users=report.users,
            counts=report.counts(),
            results=[
                UserSyncResult(
                    user_id=result.user_id,
                    outcome=result.outcome.value,
                    google_event_id=result.google_event_id,
                    error=result.error,
                )
                for result in report.results
            ],
            error=report.error,
        )


class SeriesRequest(BaseModel):
    """Anchor event plus the rule to expand it with."""

    event: OrgEvent
    rule: RecurrenceRule | None = None
    sync: bool = Field(
        default=False,
        description="When true, each instance is synced as a create after expansion.",
    )


class SeriesResponse(BaseModel):
    recurrence_group_id: str | None
    instances: list[OrgEvent]
    reports: list[SyncReportResponse] = Field(default_factory=list)


class ConnectionResponse(BaseModel):
    """Connection metadata; token values are never returned."""

    user_id: str
    google_email: str
    status: ConnectionStatus
    target_calendar_id: str
    token_expires_at: datetime
    last_sync_at: datetime | None = None


class CalendarOption(BaseModel):
    id: str
    summary: str
    primary: bool = False


class TargetCalendarRequest(BaseModel):
    calendar_id: str = Field(min_length=1)


class PreferenceUpdate(BaseModel):
    """Partial update; omitted flags keep their current value."""

    sync_general: bool | None = None
    sync_game: bool | None = None
    sync_meeting: bool | None = None
    sync_social: bool | None = None
    sync_fundraiser: bool | None = None
    sync_philanthropy: bool | None = None

    def apply(self, current: SyncPreference) -> SyncPreference:
        return current.model_copy(update=self.model_dump(exclude_none=True))
