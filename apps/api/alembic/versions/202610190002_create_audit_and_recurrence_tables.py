"""create activity track, field change and recurring configuration tables

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 00:10:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "activity_track",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("entity_kind", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=True),
        sa.Column("is_document_modified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approval_level", sa.Integer(), nullable=True),
        sa.Column("approval_user_id", sa.String(length=128), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_activity_track_entity",
        "activity_track",
        ["tenant_id", "entity_kind", "entity_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "field_change",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("track_id", sa.Uuid(), sa.ForeignKey("activity_track.id", ondelete="CASCADE"), nullable=False),
        sa.Column("field_name", sa.String(length=128), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("is_document_change", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_field_change_track", "field_change", ["track_id"], unique=False)

    op.create_table(
        "recurring_configuration",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("subject_kind", sa.String(length=32), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("cycle_type", sa.String(length=8), nullable=False),
        sa.Column("interval_count", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("never_expires", sa.Boolean(), nullable=False),
        sa.Column("occurrence_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_occurrence_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_recurring_configuration_subject",
        "recurring_configuration",
        ["tenant_id", "subject_kind", "subject_id"],
        unique=False,
    )
    op.create_index("ix_recurring_configuration_active", "recurring_configuration", ["is_active"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_recurring_configuration_active", table_name="recurring_configuration")
    op.drop_index("ix_recurring_configuration_subject", table_name="recurring_configuration")
    op.drop_table("recurring_configuration")
    op.drop_index("ix_field_change_track", table_name="field_change")
    op.drop_table("field_change")
    op.drop_index("ix_activity_track_entity", table_name="activity_track")
    op.drop_table("activity_track")
