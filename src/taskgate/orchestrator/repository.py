"""Persistent task queue backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, func, select

from taskgate.orchestrator.models import (
    TERMINAL_STATUSES,
    ConversationEntryView,
    ConversationRole,
    QueueItemCreate,
    QueueItemView,
    QueueStatus,
    StatusErrorCode,
    StatusUpdateResult,
    TaskDetails,
    TaskEventView,
    TaskGroupContext,
    TaskGroupSummary,
    TaskResultSummary,
    is_allowed_transition,
)
from taskgate.storage.alembic_runner import upgrade_head
from taskgate.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from taskgate.storage.sqlmodel_models import QueueConversationEntry, QueueTask, QueueTaskEvent

logger = logging.getLogger(__name__)

_SUMMARY_CHARS = 200


class QueueRepository:
    """Queue persistence facade enforcing the task lifecycle."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5000,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._id_factory = id_factory or (lambda: str(uuid4()))

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(self, payload: QueueItemCreate) -> QueueItemView:
        """Create a QUEUED task."""

        now = utc_now()
        task_id = payload.task_id or self._id_factory()
        with Session(self.engine) as session:
            row = QueueTask(
                task_id=task_id,
                session_id=payload.session_id,
                task_group_id=payload.task_group_id or task_id,
                prompt=payload.prompt,
                status=QueueStatus.QUEUED.value,
                plan_id=payload.plan_id,
                subtask_id=payload.subtask_id,
                plan_step=payload.plan_step,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=QueueStatus.QUEUED,
                details={
                    "task_group_id": row.task_group_id,
                    "plan_id": payload.plan_id,
                    "subtask_id": payload.subtask_id,
                    "plan_step": payload.plan_step,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_view(row)

    def claim(self, *, worker_id: str) -> QueueItemView | None:
        """Atomically move the earliest-created claimable QUEUED task to RUNNING.

        A plan subtask is claimable only once every subtask of an earlier
        plan step has reached a terminal status.
        """

        earlier = aliased(QueueTask)
        earlier_step_pending = (
            select(earlier.task_id)
            .where(
                earlier.plan_id == QueueTask.plan_id,
                earlier.plan_step < QueueTask.plan_step,
                earlier.status.not_in(sorted(status.value for status in TERMINAL_STATUSES)),
            )
            .exists()
        )
        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(QueueTask)
                    .where(
                        QueueTask.status == QueueStatus.QUEUED.value,
                        ~earlier_step_pending,
                    )
                    .order_by(col(QueueTask.created_at).asc(), col(QueueTask.task_id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(QueueTask)
                    .where(
                        col(QueueTask.task_id) == candidate.task_id,
                        col(QueueTask.status) == QueueStatus.QUEUED.value,
                    )
                    .values(
                        status=QueueStatus.RUNNING.value,
                        worker_id=worker_id,
                        started_at=to_db_datetime(now),
                        finished_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._add_event(
                    session=session,
                    task_id=candidate.task_id,
                    event_type="claimed",
                    status_from=QueueStatus.QUEUED,
                    status_to=QueueStatus.RUNNING,
                    details={"worker_id": worker_id},
                )
                session.commit()

                claimed = session.exec(
                    select(QueueTask).where(QueueTask.task_id == candidate.task_id),
                ).one()
                history = _load_histories(session, [claimed.task_id])
                return _to_view(claimed, history.get(claimed.task_id, []))

    def update_status(  # noqa: PLR0913
        self,
        task_id: str,
        new_status: QueueStatus,
        *,
        error_message: str | None = None,
        output: str | None = None,
        files_modified: Sequence[str] | None = None,
    ) -> StatusUpdateResult:
        """Apply one transition from the lifecycle table, or report why not."""

        if new_status == QueueStatus.AWAITING_RESPONSE:
            current = self.get_task(task_id)
            if current is None:
                return _not_found(task_id)
            if not is_allowed_transition(current.status, new_status):
                return _invalid_transition(task_id, current.status, new_status)
            return self.set_awaiting_response(task_id, question=current.clarification)

        now = utc_now()
        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                return _not_found(task_id)
            old_status = QueueStatus(row.status)
            if not is_allowed_transition(old_status, new_status):
                return _invalid_transition(task_id, old_status, new_status)
            if old_status == QueueStatus.AWAITING_RESPONSE and new_status == QueueStatus.QUEUED:
                return _invalid_transition(
                    task_id,
                    old_status,
                    new_status,
                    hint="record the reply with resume_with_response",
                )

            values: dict[str, Any] = {
                "status": new_status.value,
                "updated_at": to_db_datetime(now),
            }
            if new_status in TERMINAL_STATUSES:
                values["finished_at"] = to_db_datetime(now)
                values["clarification_deferred_at"] = None
            if new_status == QueueStatus.RUNNING:
                values["started_at"] = to_db_datetime(now)
            if new_status == QueueStatus.QUEUED:
                values["worker_id"] = None
            if old_status == QueueStatus.AWAITING_RESPONSE:
                values["clarification"] = None
            if error_message is not None:
                values["error_message"] = error_message
            if output is not None:
                values["output"] = output
            if files_modified is not None:
                values["files_modified_json"] = json.dumps(list(files_modified))

            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task_id,
                    col(QueueTask.status) == old_status.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return _conflict(task_id, old_status, new_status)

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="status_changed",
                status_from=old_status,
                status_to=new_status,
                details={"error_message": error_message} if error_message else {},
            )
            if old_status == QueueStatus.AWAITING_RESPONSE:
                self._promote_deferred_clarification(session=session)
            session.commit()

        logger.debug("Task %s moved %s -> %s", task_id, old_status.value, new_status.value)
        return StatusUpdateResult(
            success=True,
            task_id=task_id,
            old_status=old_status,
            new_status=new_status,
        )

    def set_awaiting_response(self, task_id: str, question: str | None) -> StatusUpdateResult:
        """Move RUNNING to AWAITING_RESPONSE unless another task already waits.

        A blocked request is deferred: the question stays on the RUNNING task
        until the pending clarification is resolved.
        """

        try:
            with Session(self.engine) as session:
                row = _find_task(session, task_id)
                if row is None:
                    return _not_found(task_id)
                old_status = QueueStatus(row.status)
                if old_status != QueueStatus.RUNNING:
                    return _invalid_transition(task_id, old_status, QueueStatus.AWAITING_RESPONSE)

                if self._try_enter_awaiting(session=session, task_id=task_id, question=question):
                    self._add_event(
                        session=session,
                        task_id=task_id,
                        event_type="awaiting_response",
                        status_from=QueueStatus.RUNNING,
                        status_to=QueueStatus.AWAITING_RESPONSE,
                        details={"question": question} if question else {},
                    )
                    session.commit()
                    return StatusUpdateResult(
                        success=True,
                        task_id=task_id,
                        old_status=QueueStatus.RUNNING,
                        new_status=QueueStatus.AWAITING_RESPONSE,
                    )
                session.rollback()
        except IntegrityError:
            logger.debug("Concurrent clarification won the pending slot for task %s", task_id)

        return self._defer_clarification(task_id=task_id, question=question)

    def resume_with_response(self, task_id: str, reply: str) -> StatusUpdateResult:
        """Record the user's reply and requeue the task with its history intact."""

        now = utc_now()
        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                return _not_found(task_id)
            old_status = QueueStatus(row.status)
            if old_status != QueueStatus.AWAITING_RESPONSE:
                return _invalid_transition(task_id, old_status, QueueStatus.QUEUED)

            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task_id,
                    col(QueueTask.status) == QueueStatus.AWAITING_RESPONSE.value,
                )
                .values(
                    status=QueueStatus.QUEUED.value,
                    clarification=None,
                    worker_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return _conflict(task_id, old_status, QueueStatus.QUEUED)

            question = row.clarification
            if question and not _question_in_history(session, task_id, question):
                session.add(
                    QueueConversationEntry(
                        task_id=task_id,
                        task_group_id=row.task_group_id,
                        role=ConversationRole.ASSISTANT.value,
                        content=question,
                        created_at=to_db_datetime(now),
                    ),
                )
            session.add(
                QueueConversationEntry(
                    task_id=task_id,
                    task_group_id=row.task_group_id,
                    role=ConversationRole.USER.value,
                    content=reply,
                    created_at=to_db_datetime(now),
                ),
            )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="resumed",
                status_from=QueueStatus.AWAITING_RESPONSE,
                status_to=QueueStatus.QUEUED,
                details={},
            )
            self._promote_deferred_clarification(session=session)
            session.commit()

        return StatusUpdateResult(
            success=True,
            task_id=task_id,
            old_status=QueueStatus.AWAITING_RESPONSE,
            new_status=QueueStatus.QUEUED,
        )

    def append_conversation(
        self,
        *,
        task_id: str,
        role: ConversationRole,
        content: str,
    ) -> ConversationEntryView:
        """Append one entry to a task's conversation history."""

        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                raise RuntimeError(f"Task not found: {task_id}")
            entry = QueueConversationEntry(
                task_id=task_id,
                task_group_id=row.task_group_id,
                role=role.value,
                content=content,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return _to_entry_view(entry)

    def touch_task(self, task_id: str) -> None:
        """Refresh ``updated_at`` of a running task so it is not recovered as stale."""

        with Session(self.engine) as session:
            session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task_id,
                    col(QueueTask.status) == QueueStatus.RUNNING.value,
                )
                .values(updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def get_task(self, task_id: str) -> QueueItemView | None:
        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                return None
            history = _load_histories(session, [task_id])
            return _to_view(row, history.get(task_id, []))

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                return None
            history = _load_histories(session, [task_id])
            event_rows = session.exec(
                select(QueueTaskEvent)
                .where(QueueTaskEvent.task_id == task_id)
                .order_by(col(QueueTaskEvent.created_at).asc(), col(QueueTaskEvent.id).asc()),
            ).all()
            task = _to_view(row, history.get(task_id, []))

        events: list[TaskEventView] = []
        for event_row in event_rows:
            details: dict[str, Any] = {}
            if event_row.details_json:
                parsed = json.loads(event_row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=event_row.id or 0,
                    task_id=event_row.task_id,
                    event_type=event_row.event_type,
                    status_from=(
                        QueueStatus(event_row.status_from)
                        if event_row.status_from is not None
                        else None
                    ),
                    status_to=(
                        QueueStatus(event_row.status_to)
                        if event_row.status_to is not None
                        else None
                    ),
                    created_at=to_utc_aware_datetime(event_row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=task, events=events)

    def list_tasks(
        self,
        *,
        status: QueueStatus | None = None,
        limit: int = 50,
    ) -> list[QueueItemView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(QueueTask)
            if status is not None:
                statement = statement.where(QueueTask.status == status.value)
            statement = statement.order_by(
                col(QueueTask.created_at).desc(),
                col(QueueTask.task_id).desc(),
            ).limit(limit)
            rows = session.exec(statement).all()
            histories = _load_histories(session, [row.task_id for row in rows])
        return [_to_view(row, histories.get(row.task_id, [])) for row in rows]

    def list_by_task_group(self, task_group_id: str) -> list[QueueItemView]:
        """Tasks of one group in creation order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueTask)
                .where(QueueTask.task_group_id == task_group_id)
                .order_by(col(QueueTask.created_at).asc(), col(QueueTask.task_id).asc()),
            ).all()
            histories = _load_histories(session, [row.task_id for row in rows])
        return [_to_view(row, histories.get(row.task_id, [])) for row in rows]

    def list_task_groups(self, *, limit: int = 50) -> list[TaskGroupSummary]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(
                    QueueTask.task_group_id,
                    func.count(col(QueueTask.task_id)),
                    func.min(QueueTask.created_at),
                    func.max(QueueTask.updated_at),
                )
                .group_by(col(QueueTask.task_group_id))
                .order_by(func.max(QueueTask.updated_at).desc())
                .limit(limit),
            ).all()
        return [
            TaskGroupSummary(
                task_group_id=task_group_id,
                task_count=int(task_count),
                created_at=to_utc_aware_datetime(created_at),
                latest_updated_at=to_utc_aware_datetime(latest_updated_at),
            )
            for task_group_id, task_count, created_at, latest_updated_at in rows
        ]

    def get_task_group_context(
        self,
        task_group_id: str,
        *,
        exclude_task_id: str | None = None,
    ) -> TaskGroupContext:
        """Conversation, working files and last result of one group only."""

        with Session(self.engine) as session:
            entry_statement = select(QueueConversationEntry).where(
                QueueConversationEntry.task_group_id == task_group_id,
            )
            if exclude_task_id is not None:
                entry_statement = entry_statement.where(
                    QueueConversationEntry.task_id != exclude_task_id,
                )
            entries = session.exec(
                entry_statement.order_by(
                    col(QueueConversationEntry.created_at).asc(),
                    col(QueueConversationEntry.id).asc(),
                ),
            ).all()
            tasks = session.exec(
                select(QueueTask)
                .where(QueueTask.task_group_id == task_group_id)
                .order_by(col(QueueTask.created_at).asc(), col(QueueTask.task_id).asc()),
            ).all()

        working_files: list[str] = []
        for task in tasks:
            for path in _decode_files(task.files_modified_json):
                if path not in working_files:
                    working_files.append(path)

        finished = [
            task
            for task in tasks
            if task.finished_at is not None
            and task.task_id != exclude_task_id
            and QueueStatus(task.status) != QueueStatus.CANCELLED
        ]
        last_result: TaskResultSummary | None = None
        if finished:
            last = max(finished, key=lambda task: (task.finished_at, task.task_id))
            last_result = TaskResultSummary(
                task_id=last.task_id,
                status=QueueStatus(last.status),
                summary=(last.output or "")[:_SUMMARY_CHARS],
                files_modified=_decode_files(last.files_modified_json),
                error=last.error_message,
            )

        return TaskGroupContext(
            task_group_id=task_group_id,
            conversation_history=[_to_entry_view(entry) for entry in entries],
            working_files=working_files,
            last_task_result=last_result,
        )

    def recover_stale_running_tasks(self, *, stale_after: timedelta) -> list[str]:
        """Fail RUNNING tasks whose worker stopped updating them.

        Tasks holding a deferred clarification are waiting, not stale.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[str] = []
        with Session(self.engine) as session:
            stale_ids = session.exec(
                select(QueueTask.task_id).where(
                    QueueTask.status == QueueStatus.RUNNING.value,
                    col(QueueTask.clarification_deferred_at).is_(None),
                    col(QueueTask.updated_at) < cutoff,
                ),
            ).all()
            for task_id in stale_ids:
                message = (
                    f"Worker stopped responding: no progress for "
                    f"{int(stale_after.total_seconds())}s"
                )
                result = session.exec(
                    sa_update(QueueTask)
                    .where(
                        col(QueueTask.task_id) == task_id,
                        col(QueueTask.status) == QueueStatus.RUNNING.value,
                        col(QueueTask.clarification_deferred_at).is_(None),
                        col(QueueTask.updated_at) < cutoff,
                    )
                    .values(
                        status=QueueStatus.ERROR.value,
                        error_message=message,
                        finished_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="stale_recovered",
                    status_from=QueueStatus.RUNNING,
                    status_to=QueueStatus.ERROR,
                    details={"stale_after_seconds": int(stale_after.total_seconds())},
                )
                recovered.append(task_id)
            session.commit()

        if recovered:
            logger.warning("Recovered %d stale running task(s): %s", len(recovered), recovered)
        return recovered

    def _try_enter_awaiting(
        self,
        *,
        session: Session,
        task_id: str,
        question: str | None,
    ) -> bool:
        now = utc_now()
        pending = aliased(QueueTask)
        someone_waiting = (
            select(pending.task_id)
            .where(pending.status == QueueStatus.AWAITING_RESPONSE.value)
            .exists()
        )
        result = session.exec(
            sa_update(QueueTask)
            .where(
                col(QueueTask.task_id) == task_id,
                col(QueueTask.status) == QueueStatus.RUNNING.value,
                ~someone_waiting,
            )
            .values(
                status=QueueStatus.AWAITING_RESPONSE.value,
                clarification=question,
                clarification_deferred_at=None,
                updated_at=to_db_datetime(now),
            ),
        )
        return result.rowcount == 1

    def _defer_clarification(self, *, task_id: str, question: str | None) -> StatusUpdateResult:
        now = utc_now()
        with Session(self.engine) as session:
            row = _find_task(session, task_id)
            if row is None:
                return _not_found(task_id)
            old_status = QueueStatus(row.status)
            if old_status != QueueStatus.RUNNING:
                return _conflict(task_id, old_status, QueueStatus.AWAITING_RESPONSE)
            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task_id,
                    col(QueueTask.status) == QueueStatus.RUNNING.value,
                )
                .values(
                    clarification=question,
                    clarification_deferred_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return _conflict(task_id, old_status, QueueStatus.AWAITING_RESPONSE)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="clarification_deferred",
                status_from=QueueStatus.RUNNING,
                status_to=QueueStatus.RUNNING,
                details={"question": question} if question else {},
            )
            session.commit()

        logger.info("Clarification for task %s deferred: another task awaits a response", task_id)
        return StatusUpdateResult(
            success=False,
            task_id=task_id,
            old_status=QueueStatus.RUNNING,
            new_status=QueueStatus.RUNNING,
            error_code=StatusErrorCode.CLARIFICATION_DEFERRED,
            message="Another task is awaiting a response; clarification deferred.",
        )

    def _promote_deferred_clarification(self, *, session: Session) -> str | None:
        """Hand the pending slot to the oldest deferred clarification."""

        candidate = session.exec(
            select(QueueTask)
            .where(
                QueueTask.status == QueueStatus.RUNNING.value,
                col(QueueTask.clarification_deferred_at).is_not(None),
            )
            .order_by(
                col(QueueTask.clarification_deferred_at).asc(),
                col(QueueTask.task_id).asc(),
            )
            .limit(1),
        ).one_or_none()
        if candidate is None:
            return None
        task_id = candidate.task_id
        if not self._try_enter_awaiting(
            session=session,
            task_id=task_id,
            question=candidate.clarification,
        ):
            return None
        self._add_event(
            session=session,
            task_id=task_id,
            event_type="clarification_promoted",
            status_from=QueueStatus.RUNNING,
            status_to=QueueStatus.AWAITING_RESPONSE,
            details={},
        )
        logger.info("Promoted deferred clarification of task %s", task_id)
        return task_id

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: QueueStatus | None,
        status_to: QueueStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            QueueTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _find_task(session: Session, task_id: str) -> QueueTask | None:
    return session.exec(select(QueueTask).where(QueueTask.task_id == task_id)).one_or_none()


def _question_in_history(session: Session, task_id: str, question: str) -> bool:
    """Whether the task's latest assistant entry already carries ``question``."""

    latest = session.exec(
        select(QueueConversationEntry)
        .where(
            QueueConversationEntry.task_id == task_id,
            QueueConversationEntry.role == ConversationRole.ASSISTANT.value,
        )
        .order_by(
            col(QueueConversationEntry.created_at).desc(),
            col(QueueConversationEntry.id).desc(),
        )
        .limit(1),
    ).one_or_none()
    return latest is not None and question in latest.content


def _load_histories(
    session: Session,
    task_ids: Sequence[str],
) -> dict[str, list[ConversationEntryView]]:
    if not task_ids:
        return {}
    rows = session.exec(
        select(QueueConversationEntry)
        .where(col(QueueConversationEntry.task_id).in_(list(task_ids)))
        .order_by(
            col(QueueConversationEntry.created_at).asc(),
            col(QueueConversationEntry.id).asc(),
        ),
    ).all()
    histories: dict[str, list[ConversationEntryView]] = {}
    for row in rows:
        histories.setdefault(row.task_id, []).append(_to_entry_view(row))
    return histories


def _not_found(task_id: str) -> StatusUpdateResult:
    return StatusUpdateResult(
        success=False,
        task_id=task_id,
        error_code=StatusErrorCode.TASK_NOT_FOUND,
        message=f"Task not found: {task_id}",
    )


def _invalid_transition(
    task_id: str,
    old_status: QueueStatus,
    new_status: QueueStatus,
    *,
    hint: str | None = None,
) -> StatusUpdateResult:
    message = f"Cannot transition from {old_status.value} to {new_status.value}"
    if hint:
        message = f"{message}; {hint}"
    return StatusUpdateResult(
        success=False,
        task_id=task_id,
        old_status=old_status,
        new_status=new_status,
        error_code=StatusErrorCode.INVALID_STATUS,
        message=message,
    )


def _conflict(
    task_id: str,
    old_status: QueueStatus,
    new_status: QueueStatus,
) -> StatusUpdateResult:
    return StatusUpdateResult(
        success=False,
        task_id=task_id,
        old_status=old_status,
        new_status=new_status,
        error_code=StatusErrorCode.STATUS_CONFLICT,
        message=(
            f"Task state changed concurrently while moving {old_status.value} "
            f"to {new_status.value} (task_id={task_id})."
        ),
    )


def _decode_files(raw: str | None) -> list[str]:
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_entry_view(row: QueueConversationEntry) -> ConversationEntryView:
    return ConversationEntryView(
        entry_id=row.id or 0,
        task_id=row.task_id,
        task_group_id=row.task_group_id,
        role=ConversationRole(row.role),
        content=row.content,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_view(
    row: QueueTask,
    history: list[ConversationEntryView] | None = None,
) -> QueueItemView:
    return QueueItemView(
        task_id=row.task_id,
        session_id=row.session_id,
        task_group_id=row.task_group_id,
        prompt=row.prompt,
        status=QueueStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        conversation_history=list(history or []),
        error_message=row.error_message,
        output=row.output,
        worker_id=row.worker_id,
        started_at=_optional_datetime(row.started_at),
        finished_at=_optional_datetime(row.finished_at),
        files_modified=_decode_files(row.files_modified_json),
        clarification=row.clarification,
        clarification_deferred_at=_optional_datetime(row.clarification_deferred_at),
        plan_id=row.plan_id,
        subtask_id=row.subtask_id,
        plan_step=row.plan_step,
    )
