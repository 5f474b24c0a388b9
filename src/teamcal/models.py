"""Domain models shared by the sync engine.

Events and recurrence rules are produced by the event CRUD layer; connection,
preference and ledger records are persisted by this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TARGET_CALENDAR_ID = "primary"


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SyncStatus(StrEnum):
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class SyncOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EventType(StrEnum):
    GENERAL = "general"
    GAME = "game"
    MEETING = "meeting"
    SOCIAL = "social"
    FUNDRAISER = "fundraiser"
    PHILANTHROPY = "philanthropy"


class Audience(StrEnum):
    MEMBERS = "members"
    ALUMNI = "alumni"
    BOTH = "both"
    SPECIFIC = "specific"


class OccurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


_EVENT_TYPES = frozenset(item.value for item in EventType)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Event CRUD layer inputs
# ---------------------------------------------------------------------------


class RecurrenceRule(BaseModel):
    """How a recurring event repeats.

    ``day_of_week`` uses 0 = Sunday through 6 = Saturday.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    occurrence_type: OccurrenceType
    day_of_week: frozenset[int] | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    recurrence_end_date: date | None = None

    @field_validator("day_of_week")
    @classmethod
    def _validate_weekdays(cls, value: frozenset[int] | None) -> frozenset[int] | None:
        if value is None:
            return None
        invalid = sorted(day for day in value if day < 0 or day > 6)
        if invalid:
            raise ValueError(f"day_of_week values must be in 0..6, got {invalid}")
        return value


class OrgEvent(BaseModel):
    """An organization event as handed over by the event CRUD layer.

    ``event_type`` and ``audience`` stay plain strings: unknown values are
    tolerated and treated permissively by the eligibility rules.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)
    title: str
    description: str | None = None
    location: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    event_type: str | None = None
    audience: str | None = None
    target_user_ids: list[str] | None = None
    recurrence_rule: RecurrenceRule | None = None
    recurrence_group_id: str | None = None
    recurrence_index: int | None = None


# ---------------------------------------------------------------------------
# Google wire shape
# ---------------------------------------------------------------------------


class WireEventTime(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    date_time: str = Field(alias="dateTime")
    time_zone: str = Field(alias="timeZone")


class WireEvent(BaseModel):
    """Event body accepted by the Google Calendar ``events`` resource."""

    model_config = ConfigDict(frozen=True)

    summary: str
    description: str | None = None
    location: str | None = None
    start: WireEventTime
    end: WireEventTime

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class CalendarConnection:
    """A user's Google Calendar connection with decrypted tokens."""

    user_id: str
    google_email: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    status: ConnectionStatus
    target_calendar_id: str = DEFAULT_TARGET_CALENDAR_ID
    last_sync_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"CalendarConnection("
            f"user_id={self.user_id!r}, "
            f"google_email={self.google_email!r}, "
            f"access_token=<REDACTED>, "
            f"refresh_token=<REDACTED>, "
            f"expires_at={self.expires_at!r}, "
            f"status={self.status!r}, "
            f"target_calendar_id={self.target_calendar_id!r})"
        )

    __str__ = __repr__


@dataclass(frozen=True)
class CalendarAccess:
    """A usable access token plus the calendar it should write to."""

    user_id: str
    access_token: str
    calendar_id: str

    def __repr__(self) -> str:
        return (
            f"CalendarAccess(user_id={self.user_id!r}, access_token=<REDACTED>, "
            f"calendar_id={self.calendar_id!r})"
        )


class SyncPreference(BaseModel):
    """Per-user, per-organization category toggles. Every flag defaults to on."""

    user_id: str
    organization_id: str
    sync_general: bool = True
    sync_game: bool = True
    sync_meeting: bool = True
    sync_social: bool = True
    sync_fundraiser: bool = True
    sync_philanthropy: bool = True

    def allows(self, event_type: str | None) -> bool:
        """Return whether events of *event_type* should be synced.

        Missing types count as ``general``; unknown types are allowed.
        """
        category = event_type or EventType.GENERAL
        if category not in _EVENT_TYPES:
            return True
        return getattr(self, f"sync_{category}") is not False


@dataclass
class SyncEntry:
    """Ledger row for one (event, user) pair."""

    event_id: str
    user_id: str
    organization_id: str
    google_event_id: str | None
    sync_status: SyncStatus
    google_calendar_id: str | None = None
    last_error: str | None = None
    updated_at: datetime | None = None

