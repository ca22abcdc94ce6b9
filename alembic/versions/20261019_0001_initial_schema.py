"""initial schema

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
        "attribute_models",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attribute_models_owner_id", "attribute_models", ["owner_id"], unique=False)

    op.create_table(
        "attribute_model_versions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("model_id", sa.String(length=36), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("changelog", sa.Text(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["model_id"], ["attribute_models.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("model_id", "version_number", name="uq_attribute_model_versions_number"),
    )
    op.create_index("ix_attribute_model_versions_model_id", "attribute_model_versions", ["model_id"], unique=False)

    op.create_table(
        "extraction_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("model_id", sa.String(length=36), nullable=False),
        sa.Column("model_version_id", sa.String(length=36), nullable=False),
        sa.Column("llm_model_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), server_default="processing", nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("usage", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["model_id"], ["attribute_models.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["model_version_id"], ["attribute_model_versions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_extraction_runs_owner_id", "extraction_runs", ["owner_id"], unique=False)
    op.create_index("ix_extraction_runs_model_id", "extraction_runs", ["model_id"], unique=False)
    op.create_index("ix_extraction_runs_status", "extraction_runs", ["status"], unique=False)

    op.create_table(
        "extraction_inputs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("extraction_id", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=1024), nullable=False),
        sa.Column("file_type", sa.String(length=128), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("source_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["extraction_id"], ["extraction_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_extraction_inputs_extraction_id", "extraction_inputs", ["extraction_id"], unique=False)

    op.create_table(
        "extraction_errors",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("extraction_id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["extraction_id"], ["extraction_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("extraction_id", name="uq_extraction_errors_extraction_id"),
    )
    op.create_index("ix_extraction_errors_owner_id", "extraction_errors", ["owner_id"], unique=False)

    op.create_table(
        "integration_targets",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("config_version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("type IN ('webhook', 'sheets', 'postgres')", name="ck_integration_targets_type"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integration_targets_owner_id", "integration_targets", ["owner_id"], unique=False)
    op.create_index("ix_integration_targets_enabled", "integration_targets", ["enabled"], unique=False)

    op.create_table(
        "integration_deliveries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("target_id", sa.String(length=36), nullable=False),
        sa.Column("extraction_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=32), server_default="pending", nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["target_id"], ["integration_targets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["extraction_id"], ["extraction_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integration_deliveries_target_id", "integration_deliveries", ["target_id"], unique=False)
    op.create_index(
        "ix_integration_deliveries_extraction_id",
        "integration_deliveries",
        ["extraction_id"],
        unique=False,
    )
    op.create_index("ix_integration_deliveries_status", "integration_deliveries", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_integration_deliveries_status", table_name="integration_deliveries")
    op.drop_index("ix_integration_deliveries_extraction_id", table_name="integration_deliveries")
    op.drop_index("ix_integration_deliveries_target_id", table_name="integration_deliveries")
    op.drop_table("integration_deliveries")
    op.drop_index("ix_integration_targets_enabled", table_name="integration_targets")
    op.drop_index("ix_integration_targets_owner_id", table_name="integration_targets")
    op.drop_table("integration_targets")
    op.drop_index("ix_extraction_errors_owner_id", table_name="extraction_errors")
    op.drop_table("extraction_errors")
    op.drop_index("ix_extraction_inputs_extraction_id", table_name="extraction_inputs")
    op.drop_table("extraction_inputs")
    op.drop_index("ix_extraction_runs_status", table_name="extraction_runs")
    op.drop_index("ix_extraction_runs_model_id", table_name="extraction_runs")
    op.drop_index("ix_extraction_runs_owner_id", table_name="extraction_runs")
    op.drop_table("extraction_runs")
    op.drop_index("ix_attribute_model_versions_model_id", table_name="attribute_model_versions")
    op.drop_table("attribute_model_versions")
    op.drop_index("ix_attribute_models_owner_id", table_name="attribute_models")
    op.drop_table("attribute_models")
