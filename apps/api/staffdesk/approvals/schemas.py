from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from staffdesk.platform.kinds import ApprovalModule


ApprovalScopeValue = Literal["global", "owner", "record"]


class ApprovalLevelInput(BaseModel):
    rank: int
    approver_ids: list[str] = Field(default_factory=list)


class ApprovalChainCreate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    module: ApprovalModule
    scope: ApprovalScopeValue
    levels: list[ApprovalLevelInput] = Field(min_length=1)


class ApprovalChainReplace(BaseModel):
    row_version: int | None = None
    levels: list[ApprovalLevelInput] = Field(min_length=1)


class AddLevelRequest(BaseModel):
    position: int
    approver_ids: list[str] = Field(min_length=1)
    row_version: int | None = None


class AddApproverRequest(BaseModel):
    approver_id: str = Field(min_length=1, max_length=128)
    row_version: int | None = None


class LevelApproverAdd(BaseModel):
    level_id: UUID
    approver_id: str = Field(min_length=1, max_length=128)


class ChainEditRequest(BaseModel):
    row_version: int | None = None
    remove_approver_ids: list[UUID] = Field(default_factory=list)
    remove_level_ids: list[UUID] = Field(default_factory=list)
    add_levels: list[AddLevelRequest] = Field(default_factory=list)
    add_approvers: list[LevelApproverAdd] = Field(default_factory=list)


class GlobalDefaultAssign(BaseModel):
    setting_id: UUID


class ApproverRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    level_id: UUID
    approver_id: str
    created_at: datetime


class ApprovalLevelRead(BaseModel):
    id: UUID
    setting_id: UUID
    rank: int
    approvers: list[ApproverRead] = Field(default_factory=list)


class ApprovalSettingRead(BaseModel):
    id: UUID
    tenant_id: str
    name: str | None
    module: ApprovalModule | str
    scope: ApprovalScopeValue | str
    level_count: int
    row_version: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    levels: list[ApprovalLevelRead] = Field(default_factory=list)


class GlobalDefaultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    module: ApprovalModule | str
    setting_id: UUID
    assigned_by: str
    assigned_at: datetime


class SoleApproverLevelRead(BaseModel):
    setting_id: UUID
    module: ApprovalModule | str
    level_id: UUID
    rank: int


class ApprovalPathLevelRead(BaseModel):
    rank: int
    approver_ids: list[str]


class ApprovalStateRead(BaseModel):
    entity_kind: str
    entity_id: UUID
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
    path: list[ApprovalPathLevelRead] = Field(default_factory=list)


class ApproveRequest(BaseModel):
    expected_level: int | None = None
    comment: str | None = Field(default=None, max_length=2000)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)
    expected_level: int | None = None
