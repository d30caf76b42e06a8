"""Create queue tasks, conversation entries and task events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "queue_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("task_group_id", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=True),
        sa.Column("subtask_id", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("output", sa.Text(), nullable=True),
        sa.Column("files_modified_json", sa.Text(), nullable=True),
        sa.Column("clarification", sa.Text(), nullable=True),
        sa.Column("clarification_deferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_queue_tasks_session_id", "queue_tasks", ["session_id"], unique=False)
    op.create_index(
        "ix_queue_tasks_task_group_id",
        "queue_tasks",
        ["task_group_id"],
        unique=False,
    )
    op.create_index("ix_queue_tasks_status", "queue_tasks", ["status"], unique=False)
    op.create_index("ix_queue_tasks_plan_id", "queue_tasks", ["plan_id"], unique=False)
    op.create_index("ix_queue_tasks_worker_id", "queue_tasks", ["worker_id"], unique=False)
    op.create_index(
        "idx_queue_tasks_claim",
        "queue_tasks",
        ["status", "created_at", "task_id"],
        unique=False,
    )
    op.create_index(
        "idx_queue_tasks_group_time",
        "queue_tasks",
        ["task_group_id", "created_at"],
        unique=False,
    )
    # At most one task store-wide may wait for a clarification reply.
    op.execute(
        sa.text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_queue_tasks_single_awaiting
            ON queue_tasks (status)
            WHERE status = 'awaiting_response'
            """,
        ),
    )

    op.create_table(
        "queue_conversation_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_group_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["queue_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_queue_conversation_task_time",
        "queue_conversation_entries",
        ["task_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_queue_conversation_group_time",
        "queue_conversation_entries",
        ["task_group_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "queue_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["queue_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_task_events_task_id", "queue_task_events", ["task_id"], unique=False)
    op.create_index(
        "ix_queue_task_events_event_type",
        "queue_task_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_queue_task_events_task_time",
        "queue_task_events",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_queue_task_events_task_time", table_name="queue_task_events")
    op.drop_index("ix_queue_task_events_event_type", table_name="queue_task_events")
    op.drop_index("ix_queue_task_events_task_id", table_name="queue_task_events")
    op.drop_table("queue_task_events")
    op.drop_index("idx_queue_conversation_group_time", table_name="queue_conversation_entries")
    op.drop_index("idx_queue_conversation_task_time", table_name="queue_conversation_entries")
    op.drop_table("queue_conversation_entries")
    op.execute(sa.text("DROP INDEX IF EXISTS uq_queue_tasks_single_awaiting"))
    op.drop_index("idx_queue_tasks_group_time", table_name="queue_tasks")
    op.drop_index("idx_queue_tasks_claim", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_worker_id", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_plan_id", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_status", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_task_group_id", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_session_id", table_name="queue_tasks")
    op.drop_table("queue_tasks")
