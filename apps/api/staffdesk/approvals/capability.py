from __future__ import annotations

import uuid
from datetime import datetime
from typing import ClassVar, Protocol, runtime_checkable

from staffdesk.platform.kinds import EntityKind


@runtime_checkable
class Approvable(Protocol):
    """Fields every approval-gated record exposes to the workflow engine."""

    entity_kind: ClassVar[EntityKind]

    id: uuid.UUID
    tenant_id: str
    company_id: uuid.UUID | None
    approval_setting_id: uuid.UUID | None
    status: str
    current_approval_level: int | None
    resolved_approval_setting_id: uuid.UUID | None
    submission_cycle: int
    submitted_on: datetime | None
    submitted_by: str | None
    approved_on: datetime | None
    rejected_on: datetime | None
    reject_reason: str | None
    row_version: int


class ApprovalOwner(Protocol):
    """Owning client carrying optional per-module chain references."""

    id: uuid.UUID
    tenant_id: str
    timesheet_approval_id: uuid.UUID | None
    invoice_approval_id: uuid.UUID | None
    expense_approval_id: uuid.UUID | None
    self_service_approval_id: uuid.UUID | None
