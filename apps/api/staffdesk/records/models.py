from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from staffdesk.approvals.models import utcnow
from staffdesk.approvals.states import ApprovalStatus
from staffdesk.core.database import Base
from staffdesk.platform.kinds import EntityKind


class Company(Base):
    __tablename__ = "company"

    entity_kind: ClassVar[EntityKind] = EntityKind.COMPANY

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    timesheet_approval_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    invoice_approval_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    expense_approval_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    self_service_approval_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_company_code"),)


class Timesheet(Base):
    __tablename__ = "timesheet"

    entity_kind: ClassVar[EntityKind] = EntityKind.TIMESHEET

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("company.id"), nullable=True)
    placement_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    period_start: Mapped[date] = mapped_column(Date(), nullable=False)
    period_end: Mapped[date] = mapped_column(Date(), nullable=False)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    documents: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ApprovalStatus.DRAFTED.value)
    current_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    submitted_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_timesheet_scope_status", "tenant_id", "status"),)


class Ledger(Base):
    __tablename__ = "ledger"

    entity_kind: ClassVar[EntityKind] = EntityKind.LEDGER

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("company.id"), nullable=True)
    ledger_type: Mapped[str] = mapped_column(String(16), nullable=False, default="INVOICE")
    reference_number: Mapped[str] = mapped_column(String(64), nullable=False)
    ledger_date: Mapped[date] = mapped_column(Date(), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(16), nullable=False, default="USD")
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ApprovalStatus.DRAFTED.value)
    current_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    submitted_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "ledger_type", "reference_number", name="uq_ledger_reference"),
        Index("ix_ledger_scope_status", "tenant_id", "status"),
    )


class Expense(Base):
    __tablename__ = "expense"

    entity_kind: ClassVar[EntityKind] = EntityKind.EXPENSE

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("company.id"), nullable=True)
    employee_id: Mapped[str] = mapped_column(String(128), nullable=False)
    expense_type: Mapped[str] = mapped_column(String(64), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    receipts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ApprovalStatus.DRAFTED.value)
    current_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    submitted_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_expense_scope_status", "tenant_id", "status"),)


class SelfServiceRequest(Base):
    __tablename__ = "self_service_request"

    entity_kind: ClassVar[EntityKind] = EntityKind.SELF_SERVICE_REQUEST

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("company.id"), nullable=True)
    employee_id: Mapped[str] = mapped_column(String(128), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ApprovalStatus.DRAFTED.value)
    current_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_approval_setting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=True
    )
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    submitted_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_self_service_request_scope_status", "tenant_id", "status"),)


APPROVABLE_MODELS: dict[EntityKind, type[Timesheet] | type[Ledger] | type[Expense] | type[SelfServiceRequest]] = {
    EntityKind.TIMESHEET: Timesheet,
    EntityKind.LEDGER: Ledger,
    EntityKind.EXPENSE: Expense,
    EntityKind.SELF_SERVICE_REQUEST: SelfServiceRequest,
}
