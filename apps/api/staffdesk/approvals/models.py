from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffdesk.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalScope(StrEnum):
    GLOBAL = "global"
    OWNER = "owner"
    RECORD = "record"


class ApprovalDecision(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalSetting(Base):
    __tablename__ = "approval_setting"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    module: Mapped[str] = mapped_column(String(32), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    level_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    levels: Mapped[list[ApprovalLevel]] = relationship(
        "staffdesk.approvals.models.ApprovalLevel",
        back_populates="setting",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalLevel.rank",
    )

    __table_args__ = (Index("ix_approval_setting_scope", "tenant_id", "module", "scope"),)


class ApprovalLevel(Base):
    __tablename__ = "approval_level"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    setting_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_setting.id", ondelete="CASCADE"), nullable=False
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    setting: Mapped[ApprovalSetting] = relationship("staffdesk.approvals.models.ApprovalSetting", back_populates="levels")
    approvers: Mapped[list[ApprovalUser]] = relationship(
        "staffdesk.approvals.models.ApprovalUser",
        back_populates="level",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalUser.created_at",
    )

    __table_args__ = (UniqueConstraint("setting_id", "rank", name="uq_approval_level_rank"),)


class ApprovalUser(Base):
    __tablename__ = "approval_user"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    level_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_level.id", ondelete="CASCADE"), nullable=False
    )
    approver_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    level: Mapped[ApprovalLevel] = relationship("staffdesk.approvals.models.ApprovalLevel", back_populates="approvers")

    __table_args__ = (
        UniqueConstraint("level_id", "approver_id", name="uq_approval_user_level_approver"),
        Index("ix_approval_user_approver", "approver_id"),
    )


class ApprovalDefault(Base):
    """Named global slot: the chain every record of a module falls back to."""

    __tablename__ = "approval_default"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    module: Mapped[str] = mapped_column(String(32), nullable=False)
    setting_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=False)
    assigned_by: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("tenant_id", "module", name="uq_approval_default_module"),)


class ApprovalPathStep(Base):
    """Approver snapshot frozen onto a record for one submission cycle."""

    __tablename__ = "approval_path_step"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    setting_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("approval_setting.id"), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "entity_kind", "entity_id", "submission_cycle", "rank", "approver_id", name="uq_approval_path_step"
        ),
        Index("ix_approval_path_entity_cycle", "entity_kind", "entity_id", "submission_cycle"),
    )


class ApprovalAction(Base):
    __tablename__ = "approval_action"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    submission_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[str] = mapped_column(String(128), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "entity_kind", "entity_id", "submission_cycle", "rank", "approver_id", name="uq_approval_action_decision"
        ),
        Index("ix_approval_action_entity", "entity_kind", "entity_id", "created_at"),
    )
