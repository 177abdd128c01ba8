"""lifecycle tables

Revision ID: 4c1e9a7b2d35
Revises:
Create Date: 2026-10-19 09:12:41.208113

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c1e9a7b2d35"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the lifecycle config, state and audit tables."""
    op.create_table(
        "lifecycle_configs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("experiment_id", sa.Text, nullable=False),
        sa.Column("config_json", sa.Text, nullable=False),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
        sa.UniqueConstraint("experiment_id", name="uq_lifecycle_configs_experiment"),
    )

    op.create_table(
        "lifecycle_states",
        sa.Column("experiment_id", sa.Text, primary_key=True),
        sa.Column("status", sa.Text, nullable=False, server_default="draft"),
        sa.Column("health", sa.Text, nullable=False, server_default="healthy"),
        sa.Column("state_json", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'running', 'paused', 'completed', 'failed')",
            name="ck_lifecycle_states_status",
        ),
    )
    op.create_index("idx_lifecycle_states_status", "lifecycle_states", ["status"])

    op.create_table(
        "lifecycle_audit",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("entity_id", sa.Text, nullable=False),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("old_value_json", sa.Text, nullable=False, server_default="null"),
        sa.Column("new_value_json", sa.Text, nullable=False, server_default="null"),
        sa.Column("actor", sa.Text, nullable=False, server_default=""),
        sa.Column("reason", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.Text, nullable=False),
    )
    op.create_index("idx_lifecycle_audit_entity", "lifecycle_audit", ["entity_id"])


def downgrade() -> None:
    """Drop all lifecycle tables."""
    op.drop_index("idx_lifecycle_audit_entity", table_name="lifecycle_audit")
    op.drop_table("lifecycle_audit")
    op.drop_index("idx_lifecycle_states_status", table_name="lifecycle_states")
    op.drop_table("lifecycle_states")
    op.drop_table("lifecycle_configs")
