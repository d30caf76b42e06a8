"""Domain models for the task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class QueueStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[QueueStatus] = frozenset(
    {
        QueueStatus.COMPLETE,
        QueueStatus.INCOMPLETE,
        QueueStatus.ERROR,
        QueueStatus.CANCELLED,
    },
)

ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.QUEUED: frozenset({QueueStatus.RUNNING}),
    QueueStatus.RUNNING: frozenset(
        {
            QueueStatus.COMPLETE,
            QueueStatus.INCOMPLETE,
            QueueStatus.ERROR,
            QueueStatus.AWAITING_RESPONSE,
            QueueStatus.CANCELLED,
        },
    ),
    QueueStatus.AWAITING_RESPONSE: frozenset({QueueStatus.QUEUED, QueueStatus.RUNNING}),
}


def is_allowed_transition(old: QueueStatus, new: QueueStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(old, frozenset())


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StatusErrorCode(str, Enum):
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    STATUS_CONFLICT = "STATUS_CONFLICT"
    CLARIFICATION_DEFERRED = "CLARIFICATION_DEFERRED"


@dataclass(slots=True)
class QueueItemCreate:
    """Input payload for enqueuing a task."""

    prompt: str
    session_id: str = "default"
    task_group_id: str | None = None
    task_id: str | None = None
    plan_id: str | None = None
    subtask_id: str | None = None
    plan_step: int | None = None


@dataclass(slots=True)
class ConversationEntryView:
    entry_id: int
    task_id: str
    task_group_id: str
    role: ConversationRole
    content: str
    created_at: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "task_id": self.task_id,
            "task_group_id": self.task_group_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class QueueItemView:
    """Readable task view for CLI and worker logic."""

    task_id: str
    session_id: str
    task_group_id: str
    prompt: str
    status: QueueStatus
    created_at: datetime
    updated_at: datetime
    conversation_history: list[ConversationEntryView] = field(default_factory=list)
    error_message: str | None = None
    output: str | None = None
    worker_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    files_modified: list[str] = field(default_factory=list)
    clarification: str | None = None
    clarification_deferred_at: datetime | None = None
    plan_id: str | None = None
    subtask_id: str | None = None
    plan_step: int | None = None

    @property
    def clarification_deferred(self) -> bool:
        return self.clarification_deferred_at is not None

    def to_record(self) -> dict[str, Any]:
        """JSON-serializable form of the task record."""

        return {
            "task_id": self.task_id,
            "session_id": self.session_id,
            "task_group_id": self.task_group_id,
            "prompt": self.prompt,
            "status": self.status.value,
            "conversation_history": [entry.to_record() for entry in self.conversation_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "error_message": self.error_message,
            "output": self.output,
            "worker_id": self.worker_id,
            "started_at": _isoformat(self.started_at),
            "finished_at": _isoformat(self.finished_at),
            "files_modified": list(self.files_modified),
            "clarification": self.clarification,
            "clarification_deferred_at": _isoformat(self.clarification_deferred_at),
            "plan_id": self.plan_id,
            "subtask_id": self.subtask_id,
            "plan_step": self.plan_step,
        }


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: QueueStatus | None
    status_to: QueueStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: QueueItemView
    events: list[TaskEventView]


@dataclass(slots=True)
class TaskGroupSummary:
    task_group_id: str
    task_count: int
    created_at: datetime
    latest_updated_at: datetime


@dataclass(slots=True)
class TaskResultSummary:
    """Outcome of the most recently finished task in a group."""

    task_id: str
    status: QueueStatus
    summary: str
    files_modified: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class TaskGroupContext:
    """Context shared by the tasks of one group, and only that group."""

    task_group_id: str
    conversation_history: list[ConversationEntryView] = field(default_factory=list)
    working_files: list[str] = field(default_factory=list)
    last_task_result: TaskResultSummary | None = None


@dataclass(slots=True)
class StatusUpdateResult:
    """Typed outcome of a queue transition request."""

    success: bool
    task_id: str
    old_status: QueueStatus | None = None
    new_status: QueueStatus | None = None
    error_code: StatusErrorCode | None = None
    message: str | None = None

    @property
    def deferred(self) -> bool:
        return self.error_code == StatusErrorCode.CLARIFICATION_DEFERRED


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
