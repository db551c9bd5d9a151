from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from staffdesk.approvals.schemas import (
    AddApproverRequest,
    AddLevelRequest,
    ApprovalChainCreate,
    ApprovalChainReplace,
    ApprovalSettingRead,
    ChainEditRequest,
    GlobalDefaultAssign,
    GlobalDefaultRead,
    SoleApproverLevelRead,
)
from staffdesk.approvals.store import approval_chain_store
from staffdesk.core.database import get_db
from staffdesk.platform.kinds import ApprovalModule
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.dependencies import get_auth_context


router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.post("/chains", response_model=ApprovalSettingRead, status_code=status.HTTP_201_CREATED)
def create_chain(
    payload: ApprovalChainCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.create_chain(db, ctx, payload)


@router.get("/chains", response_model=list[ApprovalSettingRead])
def list_chains(
    module: ApprovalModule | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ApprovalSettingRead]:
    return approval_chain_store.list_chains(db, ctx, module=module, include_deleted=include_deleted)


@router.get("/chains/{setting_id}", response_model=ApprovalSettingRead)
def get_chain(
    setting_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.get_chain(db, ctx, setting_id)


@router.put("/chains/{setting_id}/levels", response_model=ApprovalSettingRead)
def replace_levels(
    setting_id: uuid.UUID,
    payload: ApprovalChainReplace,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.replace_levels(db, ctx, setting_id, payload)


@router.patch("/chains/{setting_id}", response_model=ApprovalSettingRead)
def apply_edits(
    setting_id: uuid.UUID,
    payload: ChainEditRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.apply_edits(db, ctx, setting_id, payload)


@router.delete("/chains/{setting_id}", response_model=ApprovalSettingRead)
def delete_chain(
    setting_id: uuid.UUID,
    row_version: int | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.delete_chain(db, ctx, setting_id, expected_row_version=row_version)


@router.post("/chains/{setting_id}/levels", response_model=ApprovalSettingRead, status_code=status.HTTP_201_CREATED)
def add_level(
    setting_id: uuid.UUID,
    payload: AddLevelRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.add_level(db, ctx, setting_id, payload)


@router.delete("/levels/{level_id}", response_model=ApprovalSettingRead)
def remove_level(
    level_id: uuid.UUID,
    row_version: int | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.remove_level(db, ctx, level_id, expected_row_version=row_version)


@router.post("/levels/{level_id}/approvers", response_model=ApprovalSettingRead, status_code=status.HTTP_201_CREATED)
def add_approver(
    level_id: uuid.UUID,
    payload: AddApproverRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.add_approver(
        db, ctx, level_id, payload.approver_id, expected_row_version=payload.row_version
    )


@router.delete("/approvers/{approver_row_id}", response_model=ApprovalSettingRead)
def remove_approver(
    approver_row_id: uuid.UUID,
    row_version: int | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ApprovalSettingRead:
    return approval_chain_store.remove_approver(db, ctx, approver_row_id, expected_row_version=row_version)


@router.get("/approvers/{approver_id}/sole-levels", response_model=list[SoleApproverLevelRead])
def sole_approver_levels(
    approver_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[SoleApproverLevelRead]:
    return approval_chain_store.sole_approver_levels(db, ctx, approver_id)


@router.put("/defaults/{module}", response_model=GlobalDefaultRead)
def assign_global_default(
    module: ApprovalModule,
    payload: GlobalDefaultAssign,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> GlobalDefaultRead:
    return approval_chain_store.assign_global_default(db, ctx, module, payload.setting_id)
