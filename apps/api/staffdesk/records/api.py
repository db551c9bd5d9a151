from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from staffdesk.approvals.schemas import ApprovalStateRead, ApproveRequest, RejectRequest
from staffdesk.approvals.state_machine import approval_state_machine
from staffdesk.approvals.states import ExtensionAction
from staffdesk.core.database import get_db
from staffdesk.platform.kinds import ApprovalModule, EntityKind
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.dependencies import get_auth_context
from staffdesk.records.schemas import (
    AssignChainRequest,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    RecordCreate,
    RecordRead,
    RecordUpdate,
)
from staffdesk.records.service import record_service


router = APIRouter(prefix="/records", tags=["records"])
companies_router = APIRouter(prefix="/companies", tags=["companies"])


@router.post("/{kind}", response_model=RecordRead, status_code=status.HTTP_201_CREATED)
def create_record(
    kind: EntityKind,
    payload: RecordCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecordRead:
    return record_service.create(db, ctx, kind, payload)


@router.get("/{kind}/{record_id}", response_model=RecordRead)
def get_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecordRead:
    return record_service.get(db, ctx, kind, record_id)


@router.patch("/{kind}/{record_id}", response_model=RecordRead)
def update_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    payload: RecordUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecordRead:
    return record_service.update(db, ctx, kind, record_id, payload)


@router.delete("/{kind}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    row_version: int | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    record_service.delete(db, ctx, kind, record_id, expected_row_version=row_version)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{kind}/{record_id}/approval-setting", response_model=RecordRead)
def assign_custom_chain(
    kind: EntityKind,
    record_id: uuid.UUID,
    payload: AssignChainRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecordRead:
    return record_service.assign_custom_chain(db, ctx, kind, record_id, payload)


@router.get("/{kind}/{record_id}/approval", response_model=ApprovalStateRead)
def get_approval_state(
    kind: EntityKind,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalStateRead:
    record = record_service.load(db, ctx, kind, record_id)
    return approval_state_machine.get_state(db, record)


@router.post("/{kind}/{record_id}/submit", response_model=ApprovalStateRead)
def submit_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalStateRead:
    record = record_service.load(db, ctx, kind, record_id)
    return approval_state_machine.submit(db, ctx, record)


@router.post("/{kind}/{record_id}/approve", response_model=ApprovalStateRead)
def approve_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    payload: ApproveRequest | None = None,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalStateRead:
    payload = payload or ApproveRequest()
    record = record_service.load(db, ctx, kind, record_id)
    return approval_state_machine.approve(
        db, ctx, record, expected_level=payload.expected_level, comment=payload.comment
    )


@router.post("/{kind}/{record_id}/reject", response_model=ApprovalStateRead)
def reject_record(
    kind: EntityKind,
    record_id: uuid.UUID,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalStateRead:
    record = record_service.load(db, ctx, kind, record_id)
    return approval_state_machine.reject(db, ctx, record, payload.reason, expected_level=payload.expected_level)


@router.post("/{kind}/{record_id}/actions/{action}", response_model=ApprovalStateRead)
def run_extension_action(
    kind: EntityKind,
    record_id: uuid.UUID,
    action: ExtensionAction,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalStateRead:
    record = record_service.load(db, ctx, kind, record_id)
    return approval_state_machine.transition(db, ctx, record, action)


@companies_router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    payload: CompanyCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CompanyRead:
    return record_service.create_company(db, ctx, payload)


@companies_router.get("/{company_id}", response_model=CompanyRead)
def get_company(
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CompanyRead:
    return record_service.get_company(db, ctx, company_id)


@companies_router.patch("/{company_id}", response_model=CompanyRead)
def update_company(
    company_id: uuid.UUID,
    payload: CompanyUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CompanyRead:
    return record_service.update_company(db, ctx, company_id, payload)


@companies_router.delete("/{company_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_company(
    company_id: uuid.UUID,
    row_version: int | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    record_service.delete_company(db, ctx, company_id, expected_row_version=row_version)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@companies_router.put("/{company_id}/approval-settings/{module}", response_model=CompanyRead)
def assign_owner_chain(
    company_id: uuid.UUID,
    module: ApprovalModule,
    payload: AssignChainRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> CompanyRead:
    return record_service.assign_owner_chain(db, ctx, company_id, module, payload)
