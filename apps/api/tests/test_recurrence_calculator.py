from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import pytest

from staffdesk.recurrence import CycleType, InvalidRecurrence, NoMoreOccurrences, add_cycle, next_occurrence


@dataclass
class _Schedule:
    cycle_type: str
    interval_count: int
    start_date: date
    end_date: date | None = None
    never_expires: bool = False
    last_occurrence_date: date | None = None


def test_monthly_schedule_stops_after_end_date() -> None:
    schedule = _Schedule("month", 1, date(2024, 1, 15), end_date=date(2024, 3, 1))

    first = next_occurrence(schedule, today=date(2024, 2, 20))
    assert first.on == date(2024, 2, 15)
    assert first.is_due is True

    schedule.last_occurrence_date = first.on
    with pytest.raises(NoMoreOccurrences) as exc_info:
        next_occurrence(schedule, today=date(2024, 3, 20))

    assert exc_info.value.last_date == date(2024, 2, 15)
    assert exc_info.value.end_date == date(2024, 3, 1)


def test_occurrence_in_future_is_not_due() -> None:
    schedule = _Schedule("week", 2, date(2024, 1, 1), never_expires=True)

    occurrence = next_occurrence(schedule, today=date(2024, 1, 10))

    assert occurrence.on == date(2024, 1, 15)
    assert occurrence.is_due is False


def test_never_expiring_schedule_ignores_end_date() -> None:
    schedule = _Schedule("year", 1, date(2020, 6, 1), never_expires=True, last_occurrence_date=date(2030, 6, 1))

    assert next_occurrence(schedule, today=date(2031, 6, 1)).on == date(2031, 6, 1)


@pytest.mark.parametrize(
    ("base", "cycle", "count", "expected"),
    [
        (date(2024, 1, 31), CycleType.MONTH, 1, date(2024, 2, 29)),
        (date(2023, 1, 31), CycleType.MONTH, 1, date(2023, 2, 28)),
        (date(2024, 11, 30), CycleType.MONTH, 3, date(2025, 2, 28)),
        (date(2024, 2, 29), CycleType.YEAR, 1, date(2025, 2, 28)),
        (date(2024, 12, 30), CycleType.DAY, 3, date(2025, 1, 2)),
    ],
)
def test_add_cycle_clamps_to_month_end(base: date, cycle: CycleType, count: int, expected: date) -> None:
    assert add_cycle(base, cycle, count) == expected


def test_unknown_cycle_type_is_invalid() -> None:
    with pytest.raises(InvalidRecurrence):
        next_occurrence(_Schedule("fortnight", 1, date(2024, 1, 1), never_expires=True), today=date(2024, 2, 1))


def test_zero_interval_is_invalid() -> None:
    with pytest.raises(InvalidRecurrence):
        next_occurrence(_Schedule("day", 0, date(2024, 1, 1), never_expires=True), today=date(2024, 2, 1))


def test_expiring_schedule_requires_end_date() -> None:
    with pytest.raises(InvalidRecurrence):
        next_occurrence(_Schedule("day", 1, date(2024, 1, 1)), today=date(2024, 2, 1))


def test_end_date_before_start_is_invalid() -> None:
    with pytest.raises(InvalidRecurrence):
        next_occurrence(_Schedule("day", 1, date(2024, 2, 1), end_date=date(2024, 1, 1)), today=date(2024, 2, 1))
