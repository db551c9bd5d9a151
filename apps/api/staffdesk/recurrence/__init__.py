from staffdesk.recurrence.calculator import CycleType, Occurrence, add_cycle, next_occurrence, validate_schedule
from staffdesk.recurrence.errors import InvalidRecurrence, NoMoreOccurrences

__all__ = [
    "CycleType",
    "Occurrence",
    "add_cycle",
    "next_occurrence",
    "validate_schedule",
    "InvalidRecurrence",
    "NoMoreOccurrences",
]
