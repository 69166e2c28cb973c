"""Initial schema: runs and jobs

Revision ID: 001
Revises:
Create Date: 2025-12-24 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONDocument = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "runs" in existing_tables:
        # Tables already exist, skip migration
        return

    # Create runs table
    op.create_table(
        "runs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("idea_text", sa.Text, nullable=False),
        sa.Column("preset_id", sa.Text, nullable=False, server_default="default"),
        sa.Column("conversation", JSONDocument, nullable=False),
        sa.Column("result", JSONDocument),
        sa.Column("metadata", JSONDocument),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("ttl", sa.Integer, nullable=False),
    )
    op.create_index("idx_runs_status", "runs", ["status"])

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("run_id", sa.Text, sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.Text, nullable=False, server_default="pipeline"),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("payload", JSONDocument),
        sa.Column("deliveries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("idx_jobs_status", "jobs", ["status"])
    op.create_index("idx_jobs_run_id", "jobs", ["run_id"])


def downgrade() -> None:
    op.drop_index("idx_jobs_run_id", table_name="jobs")
    op.drop_index("idx_jobs_status", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("idx_runs_status", table_name="runs")
    op.drop_table("runs")
