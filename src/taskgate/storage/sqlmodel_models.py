"""SQLModel ORM tables for the task queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel


class QueueTask(SQLModel, table=True):
    __tablename__ = "queue_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_tasks_claim", "status", "created_at", "task_id"),
        Index("idx_queue_tasks_group_time", "task_group_id", "created_at"),
        Index("idx_queue_tasks_plan_step", "plan_id", "plan_step", "status"),
        Index(
            "uq_queue_tasks_single_awaiting",
            "status",
            unique=True,
            sqlite_where=text("status = 'awaiting_response'"),
        ),
    )

    task_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    task_group_id: str = Field(index=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    plan_id: str | None = Field(default=None, index=True)
    subtask_id: str | None = None
    plan_step: int | None = None
    worker_id: str | None = Field(default=None, index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    output: str | None = Field(default=None, sa_column=Column(Text))
    files_modified_json: str | None = Field(default=None, sa_column=Column(Text))
    clarification: str | None = Field(default=None, sa_column=Column(Text))
    clarification_deferred_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueConversationEntry(SQLModel, table=True):
    __tablename__ = "queue_conversation_entries"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_conversation_task_time", "task_id", "created_at"),
        Index("idx_queue_conversation_group_time", "task_group_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("queue_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    task_group_id: str
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueTaskEvent(SQLModel, table=True):
    __tablename__ = "queue_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_queue_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("queue_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
