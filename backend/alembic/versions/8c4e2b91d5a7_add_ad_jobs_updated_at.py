"""add_ad_jobs_updated_at

Revision ID: 8c4e2b91d5a7
Revises: 3f9a1c2d7b40
Create Date: 2025-11-18 09:41:07.552310

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c4e2b91d5a7"
down_revision: Union[str, Sequence[str], None] = "3f9a1c2d7b40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add updated_at, backfilled from created_at for existing rows."""
    op.add_column(
        "ad_jobs",
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.execute("UPDATE ad_jobs SET updated_at = created_at")


def downgrade() -> None:
    """Drop updated_at."""
    op.drop_column("ad_jobs", "updated_at")
