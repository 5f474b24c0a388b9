"""Expand recurrence rules into concrete, bounded event instances.

Expansion is a pure computation over UTC calendar days.  Every instance
keeps the anchor's time-of-day and duration.  The upper bound is the end of
``recurrence_end_date`` (inclusive) or six calendar months after the anchor,
and each occurrence type has a hard instance cap.
"""

from __future__ import annotations

import calendar
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from teamcal.models import OccurrenceType, OrgEvent, RecurrenceRule, ensure_utc

DEFAULT_HORIZON_MONTHS = 6

MAX_INSTANCES: dict[OccurrenceType, int] = {
    OccurrenceType.DAILY: 180,
    OccurrenceType.WEEKLY: 52,
    OccurrenceType.MONTHLY: 12,
}


@dataclass(frozen=True)
class Occurrence:
    index: int
    start: datetime
    end: datetime | None


def _weekday(day: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _upper_bound(anchor: datetime, rule: RecurrenceRule) -> datetime:
    if rule.recurrence_end_date is not None:
        return datetime.combine(rule.recurrence_end_date, time.max, tzinfo=anchor.tzinfo)
    return _add_months(anchor, DEFAULT_HORIZON_MONTHS)


def _candidate_days(anchor: date, bound: date, rule: RecurrenceRule) -> Iterator[date]:
    if rule.occurrence_type == OccurrenceType.DAILY:
        current = anchor
        while current <= bound:
            yield current
            current += timedelta(days=1)

    elif rule.occurrence_type == OccurrenceType.WEEKLY:
        weekdays = rule.day_of_week or frozenset({_weekday(anchor)})
        current = anchor
        while current <= bound:
            if _weekday(current) in weekdays:
                yield current
            current += timedelta(days=1)

    elif rule.occurrence_type == OccurrenceType.MONTHLY:
        target_day = rule.day_of_month or anchor.day
        year, month = anchor.year, anchor.month
        while date(year, month, 1) <= bound:
            # Months without the target day are skipped, never clamped.
            if target_day <= calendar.monthrange(year, month)[1]:
                candidate = date(year, month, target_day)
                if anchor <= candidate <= bound:
                    yield candidate
            month += 1
            if month > 12:
                year, month = year + 1, 1


def expand(
    anchor_start: datetime,
    anchor_end: datetime | None,
    rule: RecurrenceRule,
) -> list[Occurrence]:
    """Return the ordered occurrences of *rule* anchored at *anchor_start*.

    Parameters
    ----------
    anchor_start:
        Start of the first event; naive values are interpreted as UTC.
    anchor_end:
        End of the first event, or ``None``.  Each occurrence keeps the
        same duration; occurrences have no end when this is ``None``.
    rule:
        The recurrence rule.

    Returns
    -------
    list[Occurrence]
        Sequentially indexed from 0, capped per occurrence type.
    """
    start = ensure_utc(anchor_start)
    duration = ensure_utc(anchor_end) - start if anchor_end is not None else None
    bound = _upper_bound(start, rule)
    cap = MAX_INSTANCES[rule.occurrence_type]

    occurrences: list[Occurrence] = []
    for day in _candidate_days(start.date(), bound.date(), rule):
        instance_start = datetime.combine(day, start.timetz())
        if instance_start > bound:
            break
        occurrences.append(
            Occurrence(
                index=len(occurrences),
                start=instance_start,
                end=instance_start + duration if duration is not None else None,
            )
        )
        if len(occurrences) >= cap:
            break
    return occurrences


def build_series(event: OrgEvent, rule: RecurrenceRule | None = None) -> list[OrgEvent]:
    """Produce the concrete instance events for a recurring *event*.

    Every instance gets a fresh id and shares one ``recurrence_group_id``;
    only the first instance carries the rule.  The caller persists the
    instances and syncs each one.
    """
    rule = rule or event.recurrence_rule
    if rule is None:
        raise ValueError(f"Event {event.id!r} has no recurrence rule")

    group_id = event.recurrence_group_id or str(uuid.uuid4())
    return [
        event.model_copy(
            update={
                "id": str(uuid.uuid4()),
                "start_date": occurrence.start,
                "end_date": occurrence.end,
                "recurrence_group_id": group_id,
                "recurrence_index": occurrence.index,
                "recurrence_rule": rule if occurrence.index == 0 else None,
            }
        )
        for occurrence in expand(event.start_date, event.end_date, rule)
    ]
