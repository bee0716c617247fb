"""create_ad_jobs

Revision ID: 3f9a1c2d7b40
Revises:
Create Date: 2025-11-03 10:12:41.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ad_jobs table with version column and batch ledger."""
    op.create_table(
        "ad_jobs",
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("video_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("n8n_raw", sa.JSON(), nullable=True),
        # Compare-and-swap token for concurrent payload updates
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("expected_units", sa.Integer(), nullable=True),
        sa.Column("settled_units", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(op.f("ix_ad_jobs_status"), "ad_jobs", ["status"], unique=False)
    op.create_index(op.f("ix_ad_jobs_created_at"), "ad_jobs", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop ad_jobs table."""
    op.drop_index(op.f("ix_ad_jobs_created_at"), table_name="ad_jobs")
    op.drop_index(op.f("ix_ad_jobs_status"), table_name="ad_jobs")
    op.drop_table("ad_jobs")
