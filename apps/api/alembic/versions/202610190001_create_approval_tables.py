"""create approval chain and approvable record tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _approval_columns() -> list[sa.Column]:
    return [
        sa.Column("approval_setting_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="DRAFTED"),
        sa.Column("current_approval_level", sa.Integer(), nullable=True),
        sa.Column("resolved_approval_setting_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("submission_cycle", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_by", sa.String(length=255), nullable=True),
        sa.Column("approved_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "approval_setting",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("module", sa.String(length=32), nullable=False),
        sa.Column("scope", sa.String(length=16), nullable=False),
        sa.Column("level_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_setting_scope", "approval_setting", ["tenant_id", "module", "scope"], unique=False)

    op.create_table(
        "approval_level",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("setting_id", sa.Uuid(), sa.ForeignKey("approval_setting.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("setting_id", "rank", name="uq_approval_level_rank"),
    )

    op.create_table(
        "approval_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("level_id", sa.Uuid(), sa.ForeignKey("approval_level.id", ondelete="CASCADE"), nullable=False),
        sa.Column("approver_id", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("level_id", "approver_id", name="uq_approval_user_level_approver"),
    )
    op.create_index("ix_approval_user_approver", "approval_user", ["approver_id"], unique=False)

    op.create_table(
        "approval_default",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("module", sa.String(length=32), nullable=False),
        sa.Column("setting_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=False),
        sa.Column("assigned_by", sa.String(length=255), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "module", name="uq_approval_default_module"),
    )

    op.create_table(
        "approval_path_step",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("entity_kind", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("submission_cycle", sa.Integer(), nullable=False),
        sa.Column("setting_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_kind", "entity_id", "submission_cycle", "rank", "approver_id", name="uq_approval_path_step"
        ),
    )
    op.create_index(
        "ix_approval_path_entity_cycle",
        "approval_path_step",
        ["entity_kind", "entity_id", "submission_cycle"],
        unique=False,
    )

    op.create_table(
        "approval_action",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("entity_kind", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("submission_cycle", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.String(length=128), nullable=False),
        sa.Column("decision", sa.String(length=16), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_kind", "entity_id", "submission_cycle", "rank", "approver_id", name="uq_approval_action_decision"
        ),
    )
    op.create_index(
        "ix_approval_action_entity", "approval_action", ["entity_kind", "entity_id", "created_at"], unique=False
    )

    op.create_table(
        "company",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("timesheet_approval_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("invoice_approval_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("expense_approval_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("self_service_approval_id", sa.Uuid(), sa.ForeignKey("approval_setting.id"), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_company_code"),
    )

    op.create_table(
        "timesheet",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("company.id"), nullable=True),
        sa.Column("placement_ref", sa.String(length=64), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("total_hours", sa.Numeric(10, 2), nullable=False),
        sa.Column("documents", sa.JSON(), nullable=False),
        *_approval_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_timesheet_scope_status", "timesheet", ["tenant_id", "status"], unique=False)

    op.create_table(
        "ledger",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("company.id"), nullable=True),
        sa.Column("ledger_type", sa.String(length=16), nullable=False),
        sa.Column("reference_number", sa.String(length=64), nullable=False),
        sa.Column("ledger_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        *_approval_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "ledger_type", "reference_number", name="uq_ledger_reference"),
    )
    op.create_index("ix_ledger_scope_status", "ledger", ["tenant_id", "status"], unique=False)

    op.create_table(
        "expense",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("company.id"), nullable=True),
        sa.Column("employee_id", sa.String(length=128), nullable=False),
        sa.Column("expense_type", sa.String(length=64), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("receipts", sa.JSON(), nullable=False),
        *_approval_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_expense_scope_status", "expense", ["tenant_id", "status"], unique=False)

    op.create_table(
        "self_service_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("company.id"), nullable=True),
        sa.Column("employee_id", sa.String(length=128), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        *_approval_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_self_service_request_scope_status", "self_service_request", ["tenant_id", "status"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_self_service_request_scope_status", table_name="self_service_request")
    op.drop_table("self_service_request")
    op.drop_index("ix_expense_scope_status", table_name="expense")
    op.drop_table("expense")
    op.drop_index("ix_ledger_scope_status", table_name="ledger")
    op.drop_table("ledger")
    op.drop_index("ix_timesheet_scope_status", table_name="timesheet")
    op.drop_table("timesheet")
    op.drop_table("company")
    op.drop_index("ix_approval_action_entity", table_name="approval_action")
    op.drop_table("approval_action")
    op.drop_index("ix_approval_path_entity_cycle", table_name="approval_path_step")
    op.drop_table("approval_path_step")
    op.drop_table("approval_default")
    op.drop_index("ix_approval_user_approver", table_name="approval_user")
    op.drop_table("approval_user")
    op.drop_table("approval_level")
    op.drop_index("ix_approval_setting_scope", table_name="approval_setting")
    op.drop_table("approval_setting")
