"""reconciliation schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "transformation_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("question_id", sa.String(length=255), nullable=False),
        sa.Column("question_text", sa.Text(), nullable=True),
        sa.Column("target_table", sa.String(length=128), nullable=True),
        sa.Column("target_field", sa.String(length=128), nullable=True),
        sa.Column("strategy", sa.String(length=32), nullable=False),
        sa.Column("strategy_config_json", sa.JSON(), nullable=False),
        sa.Column("validation_rules_json", sa.JSON(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("conflict_resolution", sa.String(length=32), nullable=False, server_default="NEWER_WINS"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transformation_rules_question_id", "transformation_rules", ["question_id"], unique=False)
    op.create_index("ix_transformation_rules_created_at", "transformation_rules", ["created_at"], unique=False)

    op.create_table(
        "profile_update_proposals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("source_id", sa.String(length=255), nullable=False),
        sa.Column("source_type", sa.String(length=64), nullable=False),
        sa.Column("update_type", sa.String(length=32), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=True),
        sa.Column("question_id", sa.String(length=255), nullable=True),
        sa.Column("target_table", sa.String(length=128), nullable=False),
        sa.Column("target_field", sa.String(length=128), nullable=False),
        sa.Column("current_value", sa.Text(), nullable=True),
        sa.Column("proposed_value", sa.Text(), nullable=False),
        sa.Column("value_kind", sa.String(length=32), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("suggested_domains_json", sa.JSON(), nullable=False),
        sa.Column("conflicts_json", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("feedback_rating", sa.Integer(), nullable=True),
        sa.Column("feedback_notes", sa.Text(), nullable=True),
        sa.Column("auto_apply_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "feedback_rating IS NULL OR (feedback_rating BETWEEN 1 AND 5)",
            name="ck_profile_update_proposals_feedback_rating",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profile_update_proposals_subject_id", "profile_update_proposals", ["subject_id"], unique=False)
    op.create_index("ix_profile_update_proposals_source_id", "profile_update_proposals", ["source_id"], unique=False)
    op.create_index("ix_profile_update_proposals_status", "profile_update_proposals", ["status"], unique=False)
    op.create_index("ix_profile_update_proposals_expires_at", "profile_update_proposals", ["expires_at"], unique=False)
    op.create_index("ix_profile_update_proposals_created_at", "profile_update_proposals", ["created_at"], unique=False)
    op.create_index(
        "ix_profile_update_proposals_subject_status",
        "profile_update_proposals",
        ["subject_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_profile_update_proposals_locator",
        "profile_update_proposals",
        ["subject_id", "target_table", "target_field"],
        unique=False,
    )

    op.create_table(
        "profile_audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("proposal_id", sa.Integer(), nullable=True),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("performed_by", sa.String(length=255), nullable=False),
        sa.Column("target_table", sa.String(length=128), nullable=False),
        sa.Column("target_field", sa.String(length=128), nullable=False),
        sa.Column("previous_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profile_audit_log_proposal_id", "profile_audit_log", ["proposal_id"], unique=False)
    op.create_index("ix_profile_audit_log_subject_id", "profile_audit_log", ["subject_id"], unique=False)
    op.create_index("ix_profile_audit_log_created_at", "profile_audit_log", ["created_at"], unique=False)

    op.create_table(
        "profile_field_values",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("table_name", sa.String(length=128), nullable=False),
        sa.Column("field_name", sa.String(length=128), nullable=False),
        sa.Column("value_text", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_id", "table_name", "field_name", name="uq_profile_field_values_locator"),
    )
    op.create_index("ix_profile_field_values_subject_id", "profile_field_values", ["subject_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_profile_field_values_subject_id", table_name="profile_field_values")
    op.drop_table("profile_field_values")

    op.drop_index("ix_profile_audit_log_created_at", table_name="profile_audit_log")
    op.drop_index("ix_profile_audit_log_subject_id", table_name="profile_audit_log")
    op.drop_index("ix_profile_audit_log_proposal_id", table_name="profile_audit_log")
    op.drop_table("profile_audit_log")

    op.drop_index("ix_profile_update_proposals_locator", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_subject_status", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_created_at", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_expires_at", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_status", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_source_id", table_name="profile_update_proposals")
    op.drop_index("ix_profile_update_proposals_subject_id", table_name="profile_update_proposals")
    op.drop_table("profile_update_proposals")

    op.drop_index("ix_transformation_rules_created_at", table_name="transformation_rules")
    op.drop_index("ix_transformation_rules_question_id", table_name="transformation_rules")
    op.drop_table("transformation_rules")
