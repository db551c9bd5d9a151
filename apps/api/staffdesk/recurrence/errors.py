from __future__ import annotations

from datetime import date

from staffdesk.core.errors import DomainError


class InvalidRecurrence(DomainError):
    code = "invalid_recurrence"
    status_code = 422


class RecurrenceNotFound(DomainError):
    code = "recurrence_not_found"
    status_code = 404


class NoMoreOccurrences(Exception):
    """Terminal signal: the schedule has run past its end date.

    Not a failure. Callers stop scheduling when they see it.
    """

    def __init__(self, last_date: date, end_date: date | None) -> None:
        self.last_date = last_date
        self.end_date = end_date
        super().__init__(f"next occurrence after {last_date} falls beyond {end_date}")
