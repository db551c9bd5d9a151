from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from staffdesk.platform.kinds import EntityKind


class DocumentRef(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    filename: str | None = Field(default=None, max_length=255)


class TimesheetFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    placement_ref: str = Field(min_length=1, max_length=64)
    period_start: date
    period_end: date
    total_hours: Decimal = Field(default=Decimal("0"), ge=0)
    documents: list[DocumentRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_period(self) -> TimesheetFields:
        if self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")
        return self


class TimesheetFieldsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    placement_ref: str | None = Field(default=None, min_length=1, max_length=64)
    period_start: date | None = None
    period_end: date | None = None
    total_hours: Decimal | None = Field(default=None, ge=0)
    documents: list[DocumentRef] | None = None


class LedgerFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ledger_type: Literal["INVOICE", "BILL"] = "INVOICE"
    reference_number: str = Field(min_length=1, max_length=64)
    ledger_date: date
    due_date: date | None = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=16)
    attachments: list[DocumentRef] = Field(default_factory=list)


class LedgerFieldsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reference_number: str | None = Field(default=None, min_length=1, max_length=64)
    ledger_date: date | None = None
    due_date: date | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=16)
    attachments: list[DocumentRef] | None = None


class ExpenseFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    employee_id: str = Field(min_length=1, max_length=128)
    expense_type: str = Field(min_length=1, max_length=64)
    expense_date: date
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    receipts: list[DocumentRef] = Field(default_factory=list)


class ExpenseFieldsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expense_type: str | None = Field(default=None, min_length=1, max_length=64)
    expense_date: date | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    receipts: list[DocumentRef] | None = None


class SelfServiceFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    employee_id: str = Field(min_length=1, max_length=128)
    subject: str = Field(min_length=1, max_length=255)
    description: str | None = None
    attachments: list[DocumentRef] = Field(default_factory=list)


class SelfServiceFieldsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    attachments: list[DocumentRef] | None = None


FieldSchemas = tuple[type[BaseModel], type[BaseModel]]

FIELD_SCHEMAS: dict[EntityKind, FieldSchemas] = {
    EntityKind.TIMESHEET: (TimesheetFields, TimesheetFieldsUpdate),
    EntityKind.LEDGER: (LedgerFields, LedgerFieldsUpdate),
    EntityKind.EXPENSE: (ExpenseFields, ExpenseFieldsUpdate),
    EntityKind.SELF_SERVICE_REQUEST: (SelfServiceFields, SelfServiceFieldsUpdate),
}

TRACKED_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    kind: tuple(create_schema.model_fields) for kind, (create_schema, _) in FIELD_SCHEMAS.items()
}


class RecordCreate(BaseModel):
    company_id: UUID | None = None
    approval_setting_id: UUID | None = None
    fields: dict[str, Any]


class RecordUpdate(BaseModel):
    row_version: int
    company_id: UUID | None = None
    fields: dict[str, Any] = Field(default_factory=dict)


class AssignChainRequest(BaseModel):
    setting_id: UUID | None = None
    row_version: int | None = None


class RecordRead(BaseModel):
    id: UUID
    entity_kind: EntityKind
    tenant_id: str
    company_id: UUID | None
    approval_setting_id: UUID | None
    status: str
    current_approval_level: int | None
    resolved_approval_setting_id: UUID | None
    submission_cycle: int
    submitted_on: datetime | None
    submitted_by: str | None
    approved_on: datetime | None
    rejected_on: datetime | None
    reject_reason: str | None
    row_version: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    fields: dict[str, Any]


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=64)


class CompanyUpdate(BaseModel):
    row_version: int
    name: str | None = Field(default=None, min_length=1, max_length=255)
    code: str | None = Field(default=None, min_length=1, max_length=64)


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    code: str
    timesheet_approval_id: UUID | None
    invoice_approval_id: UUID | None
    expense_approval_id: UUID | None
    self_service_approval_id: UUID | None
    row_version: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
