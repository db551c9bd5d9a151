from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffdesk.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"


class ActivityTrack(Base):
    __tablename__ = "activity_track"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_document_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approval_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    changes: Mapped[list[FieldChange]] = relationship(
        "staffdesk.audit_trail.models.FieldChange",
        back_populates="track",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FieldChange.field_name",
    )

    __table_args__ = (Index("ix_activity_track_entity", "tenant_id", "entity_kind", "entity_id", "created_at"),)


class FieldChange(Base):
    __tablename__ = "field_change"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    track_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("activity_track.id", ondelete="CASCADE"), nullable=False
    )
    field_name: Mapped[str] = mapped_column(String(128), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_document_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    track: Mapped[ActivityTrack] = relationship("staffdesk.audit_trail.models.ActivityTrack", back_populates="changes")

    __table_args__ = (Index("ix_field_change_track", "track_id"),)
