"""lifecycle leases

Revision ID: 7d2f5b8c91a4
Revises: 4c1e9a7b2d35
Create Date: 2026-10-19 14:03:27.551902

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7d2f5b8c91a4"
down_revision: Union[str, Sequence[str], None] = "4c1e9a7b2d35"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the per-experiment lease table."""
    op.create_table(
        "lifecycle_leases",
        sa.Column("experiment_id", sa.Text, primary_key=True),
        sa.Column("worker_id", sa.Text, nullable=False),
        sa.Column("acquired_at", sa.Text, nullable=False),
        sa.Column("expires_at", sa.Text, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("lifecycle_leases")
