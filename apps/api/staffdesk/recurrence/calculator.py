"""Next-occurrence arithmetic for recurring configurations.

Everything here is pure: callers pass the schedule and "today" and persist
whatever they decide to materialize.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import StrEnum
from typing import Protocol, assert_never

from staffdesk.recurrence.errors import InvalidRecurrence, NoMoreOccurrences


class CycleType(StrEnum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class Schedule(Protocol):
    cycle_type: str
    interval_count: int
    start_date: date
    end_date: date | None
    never_expires: bool
    last_occurrence_date: date | None


@dataclass(frozen=True, slots=True)
class Occurrence:
    on: date
    is_due: bool


def _add_months(base: date, months: int) -> date:
    index = base.month - 1 + months
    year = base.year + index // 12
    month = index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_cycle(base: date, cycle_type: CycleType, count: int) -> date:
    match cycle_type:
        case CycleType.DAY:
            return base + timedelta(days=count)
        case CycleType.WEEK:
            return base + timedelta(weeks=count)
        case CycleType.MONTH:
            return _add_months(base, count)
        case CycleType.YEAR:
            return _add_months(base, 12 * count)
        case _:
            assert_never(cycle_type)


def validate_schedule(schedule: Schedule) -> CycleType:
    try:
        cycle_type = CycleType(schedule.cycle_type)
    except ValueError as exc:
        raise InvalidRecurrence(
            f"unknown cycle type {schedule.cycle_type!r}",
            details={"allowed": [item.value for item in CycleType]},
        ) from exc
    if schedule.interval_count < 1:
        raise InvalidRecurrence("interval_count must be at least 1", details={"interval_count": schedule.interval_count})
    if not schedule.never_expires and schedule.end_date is None:
        raise InvalidRecurrence("end_date is required unless the schedule never expires")
    if schedule.end_date is not None and schedule.end_date < schedule.start_date:
        raise InvalidRecurrence(
            "end_date must not precede start_date",
            details={"start_date": schedule.start_date.isoformat(), "end_date": schedule.end_date.isoformat()},
        )
    return cycle_type


def next_occurrence(schedule: Schedule, today: date) -> Occurrence:
    cycle_type = validate_schedule(schedule)
    base = schedule.last_occurrence_date or schedule.start_date
    candidate = add_cycle(base, cycle_type, schedule.interval_count)
    if not schedule.never_expires and schedule.end_date is not None and candidate > schedule.end_date:
        raise NoMoreOccurrences(base, schedule.end_date)
    return Occurrence(on=candidate, is_due=candidate <= today)
