from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from staffdesk.platform.kinds import EntityKind
from staffdesk.recurrence.calculator import CycleType


class RecurrenceCreate(BaseModel):
    subject_kind: EntityKind
    subject_id: UUID
    cycle_type: CycleType
    interval_count: int = Field(default=1, ge=1)
    start_date: date
    end_date: date | None = None
    never_expires: bool = False


class RecurrenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    subject_kind: str
    subject_id: UUID
    cycle_type: str
    interval_count: int
    start_date: date
    end_date: date | None
    never_expires: bool
    occurrence_count: int
    last_occurrence_date: date | None
    is_active: bool
    created_by: str
    created_at: datetime
    updated_at: datetime


class RecurrencePreview(BaseModel):
    configuration_id: UUID
    next_on: date | None
    is_due: bool
    exhausted: bool


class MaterializeSummary(BaseModel):
    scanned: int = 0
    due: int = 0
    completed: int = 0
    failed: int = 0
