"""Add plan step so subtasks of one plan are claimed in dependency order."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "queue_tasks",
        sa.Column("plan_step", sa.Integer(), nullable=True),
    )
    op.create_index(
        "idx_queue_tasks_plan_step",
        "queue_tasks",
        ["plan_id", "plan_step", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_queue_tasks_plan_step", table_name="queue_tasks")
    op.drop_column("queue_tasks", "plan_step")
