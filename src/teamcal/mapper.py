"""Map organization events to the Google Calendar wire shape."""

from __future__ import annotations

from datetime import datetime, timedelta

from teamcal.models import OrgEvent, WireEvent, WireEventTime, ensure_utc

# Source events carry no reliable zone metadata, so every write is pinned to UTC.
DEFAULT_TIME_ZONE = "UTC"
DEFAULT_EVENT_DURATION = timedelta(hours=1)


class EventMappingError(ValueError):
    """Raised when an event cannot be represented as a calendar entry."""


def _rfc3339(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def map_event(event: OrgEvent) -> WireEvent:
    """Build the Google ``events`` body for *event*.

    ``end`` defaults to one hour after ``start``.  Blank titles and events
    that end before they start are rejected instead of coerced.
    """
    title = event.title.strip()
    if not title:
        raise EventMappingError(f"Event {event.id!r} has no title")

    start = ensure_utc(event.start_date)
    end = ensure_utc(event.end_date) if event.end_date is not None else start + DEFAULT_EVENT_DURATION
    if end < start:
        raise EventMappingError(f"Event {event.id!r} ends before it starts")

    return WireEvent(
        summary=title,
        description=event.description or None,
        location=event.location or None,
        start=WireEventTime(date_time=_rfc3339(start), time_zone=DEFAULT_TIME_ZONE),
        end=WireEventTime(date_time=_rfc3339(end), time_zone=DEFAULT_TIME_ZONE),
    )
