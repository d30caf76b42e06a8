from __future__ import annotations

import json
import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from taskgate.orchestrator.models import (
    ConversationRole,
    QueueItemCreate,
    QueueStatus,
    StatusErrorCode,
)
from taskgate.orchestrator.prompting import assemble_task_prompt
from taskgate.orchestrator.repository import QueueRepository
from taskgate.storage.common import to_db_datetime, utc_now
from taskgate.storage.sqlmodel_models import QueueTask

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Queue Reliability"),
]


def _age_task(repository: QueueRepository, task_id: str, *, hours: int) -> None:
    with Session(repository.engine) as session:
        session.exec(
            sa_update(QueueTask)
            .where(col(QueueTask.task_id) == task_id)
            .values(updated_at=to_db_datetime(utc_now() - timedelta(hours=hours))),
        )
        session.commit()


def _running(repository: QueueRepository, prompt: str, **kwargs: str) -> str:
    task = repository.enqueue(QueueItemCreate(prompt=prompt, **kwargs))
    claimed = repository.claim(worker_id="worker-a")
    assert claimed is not None
    assert claimed.task_id == task.task_id
    return task.task_id


def test_enqueue_claim_complete_lifecycle(repository: QueueRepository) -> None:
    task = repository.enqueue(QueueItemCreate(prompt="Create a.ts", session_id="s1"))

    assert task.task_id == "task-001"
    assert task.task_group_id == "task-001"
    assert task.status == QueueStatus.QUEUED

    claimed = repository.claim(worker_id="worker-a")
    assert claimed is not None
    assert claimed.status == QueueStatus.RUNNING
    assert claimed.worker_id == "worker-a"
    assert claimed.started_at is not None

    result = repository.update_status(
        task.task_id,
        QueueStatus.COMPLETE,
        output="Created a.ts",
        files_modified=["a.ts"],
    )
    assert result.success is True
    assert (result.old_status, result.new_status) == (QueueStatus.RUNNING, QueueStatus.COMPLETE)

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status == QueueStatus.COMPLETE
    assert stored.finished_at is not None
    assert stored.files_modified == ["a.ts"]
    assert stored.output == "Created a.ts"
    assert repository.claim(worker_id="worker-a") is None


def test_claim_follows_creation_order(repository: QueueRepository) -> None:
    for prompt in ("first", "second", "third"):
        repository.enqueue(QueueItemCreate(prompt=prompt))

    claimed = [repository.claim(worker_id="worker-a") for _ in range(3)]

    assert [item.prompt for item in claimed if item is not None] == ["first", "second", "third"]


def test_invalid_transitions_are_reported_not_applied(repository: QueueRepository) -> None:
    task = repository.enqueue(QueueItemCreate(prompt="Create a.ts"))

    awaiting = repository.update_status(task.task_id, QueueStatus.AWAITING_RESPONSE)
    complete = repository.update_status(task.task_id, QueueStatus.COMPLETE)

    assert awaiting.success is False
    assert awaiting.error_code == StatusErrorCode.INVALID_STATUS
    assert complete.error_code == StatusErrorCode.INVALID_STATUS
    assert complete.message == "Cannot transition from queued to complete"
    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status == QueueStatus.QUEUED


def test_terminal_states_accept_no_further_transitions(repository: QueueRepository) -> None:
    task_id = _running(repository, "Create a.ts")
    assert repository.update_status(task_id, QueueStatus.CANCELLED).success is True

    for status in QueueStatus:
        result = repository.update_status(task_id, status)
        assert result.success is False
        assert result.error_code == StatusErrorCode.INVALID_STATUS


def test_unknown_task_is_not_found(repository: QueueRepository) -> None:
    result = repository.update_status("missing", QueueStatus.COMPLETE)

    assert result.success is False
    assert result.error_code == StatusErrorCode.TASK_NOT_FOUND
    assert repository.get_task("missing") is None
    assert repository.get_task_details("missing") is None
    assert repository.resume_with_response("missing", "yes").error_code == (
        StatusErrorCode.TASK_NOT_FOUND
    )


def test_awaiting_response_then_reply_requeues_with_history(
    repository: QueueRepository,
) -> None:
    task_id = _running(repository, "Set up the database")

    result = repository.set_awaiting_response(task_id, "Which database?")
    assert result.success is True

    waiting = repository.get_task(task_id)
    assert waiting is not None
    assert waiting.status == QueueStatus.AWAITING_RESPONSE
    assert waiting.clarification == "Which database?"

    resumed = repository.resume_with_response(task_id, "PostgreSQL")
    assert resumed.success is True
    assert resumed.new_status == QueueStatus.QUEUED

    requeued = repository.get_task(task_id)
    assert requeued is not None
    assert requeued.status == QueueStatus.QUEUED
    assert requeued.clarification is None
    assert [(entry.role, entry.content) for entry in requeued.conversation_history] == [
        (ConversationRole.ASSISTANT, "Which database?"),
        (ConversationRole.USER, "PostgreSQL"),
    ]

    reclaimed = repository.claim(worker_id="worker-b")
    assert reclaimed is not None
    assert reclaimed.task_id == task_id


def test_resumed_task_prompt_carries_question_then_reply(repository: QueueRepository) -> None:
    question = "Should I use YAML or TOML for the config file?"
    task_id = _running(repository, "Add a config loader")
    repository.append_conversation(
        task_id=task_id,
        role=ConversationRole.ASSISTANT,
        content=question,
    )
    repository.set_awaiting_response(task_id, question)
    repository.resume_with_response(task_id, "TOML")

    reclaimed = repository.claim(worker_id="worker-b")
    assert reclaimed is not None
    context = repository.get_task_group_context(
        reclaimed.task_group_id,
        exclude_task_id=reclaimed.task_id,
    )
    prompt = assemble_task_prompt(reclaimed, context)

    assert [entry.role for entry in reclaimed.conversation_history] == [
        ConversationRole.ASSISTANT,
        ConversationRole.USER,
    ]
    assert prompt.endswith(f"## Conversation so far\n[assistant] {question}\n[user] TOML")


def test_reply_requires_awaiting_status(repository: QueueRepository) -> None:
    task = repository.enqueue(QueueItemCreate(prompt="Create a.ts"))

    result = repository.resume_with_response(task.task_id, "yes")

    assert result.success is False
    assert result.error_code == StatusErrorCode.INVALID_STATUS


def test_plain_requeue_of_awaiting_task_is_refused(repository: QueueRepository) -> None:
    task_id = _running(repository, "Pick a queue backend")
    repository.set_awaiting_response(task_id, "Redis or SQLite?")

    result = repository.update_status(task_id, QueueStatus.QUEUED)

    assert result.success is False
    assert result.error_code == StatusErrorCode.INVALID_STATUS
    assert result.message is not None
    assert "resume_with_response" in result.message
    waiting = repository.get_task(task_id)
    assert waiting is not None
    assert waiting.status == QueueStatus.AWAITING_RESPONSE
    assert waiting.clarification == "Redis or SQLite?"
    assert waiting.conversation_history == []


def test_running_again_from_awaiting_clears_question(repository: QueueRepository) -> None:
    first = _running(repository, "Task one")
    second = _running(repository, "Task two")
    repository.set_awaiting_response(first, "Question one?")
    assert repository.set_awaiting_response(second, "Question two?").deferred is True

    result = repository.update_status(first, QueueStatus.RUNNING)

    assert result.success is True
    running = repository.get_task(first)
    assert running is not None
    assert running.status == QueueStatus.RUNNING
    assert running.clarification is None
    promoted = repository.get_task(second)
    assert promoted is not None
    assert promoted.status == QueueStatus.AWAITING_RESPONSE
    assert promoted.clarification == "Question two?"


def test_second_clarification_is_deferred_then_promoted(repository: QueueRepository) -> None:
    first = _running(repository, "Task one")
    second = _running(repository, "Task two")

    assert repository.set_awaiting_response(first, "Question one?").success is True
    deferred = repository.set_awaiting_response(second, "Question two?")

    assert deferred.success is False
    assert deferred.deferred is True
    assert deferred.error_code == StatusErrorCode.CLARIFICATION_DEFERRED
    waiting_second = repository.get_task(second)
    assert waiting_second is not None
    assert waiting_second.status == QueueStatus.RUNNING
    assert waiting_second.clarification == "Question two?"
    assert waiting_second.clarification_deferred is True
    awaiting = repository.list_tasks(status=QueueStatus.AWAITING_RESPONSE)
    assert [item.task_id for item in awaiting] == [first]

    repository.resume_with_response(first, "Answer one")

    promoted = repository.get_task(second)
    assert promoted is not None
    assert promoted.status == QueueStatus.AWAITING_RESPONSE
    assert promoted.clarification == "Question two?"
    assert promoted.clarification_deferred is False
    details = repository.get_task_details(second)
    assert details is not None
    event_types = [event.event_type for event in details.events]
    assert event_types[-2:] == ["clarification_deferred", "clarification_promoted"]


def test_concurrent_claims_never_share_a_task(db_path: Path, repository: QueueRepository) -> None:
    for index in range(12):
        repository.enqueue(QueueItemCreate(prompt=f"prompt {index}"))

    start = threading.Event()
    claimed: list[str] = []
    lock = threading.Lock()

    def _worker(worker_id: str) -> None:
        worker_repository = QueueRepository(db_path)
        try:
            start.wait(timeout=5)
            while (item := worker_repository.claim(worker_id=worker_id)) is not None:
                with lock:
                    claimed.append(item.task_id)
        finally:
            worker_repository.close()

    threads = [
        threading.Thread(target=_worker, args=(f"worker-{index}",), daemon=True)
        for index in range(4)
    ]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    assert len(claimed) == 12
    assert len(set(claimed)) == 12
    assert repository.list_tasks(status=QueueStatus.QUEUED) == []


def test_stale_running_tasks_are_failed_but_deferred_ones_kept(
    repository: QueueRepository,
) -> None:
    stale = _running(repository, "Long task")
    waiting = _running(repository, "Waiting task")
    fresh = _running(repository, "Fresh task")
    blocker = _running(repository, "Blocking question")
    repository.set_awaiting_response(blocker, "Which one?")
    assert repository.set_awaiting_response(waiting, "And this?").deferred is True
    _age_task(repository, stale, hours=2)
    _age_task(repository, waiting, hours=2)

    recovered = repository.recover_stale_running_tasks(stale_after=timedelta(hours=1))

    assert recovered == [stale]
    stale_task = repository.get_task(stale)
    assert stale_task is not None
    assert stale_task.status == QueueStatus.ERROR
    assert stale_task.error_message == "Worker stopped responding: no progress for 3600s"
    for task_id in (waiting, fresh):
        task = repository.get_task(task_id)
        assert task is not None
        assert task.status == QueueStatus.RUNNING


def test_touch_task_keeps_running_task_fresh(repository: QueueRepository) -> None:
    task_id = _running(repository, "Long task")
    _age_task(repository, task_id, hours=2)

    repository.touch_task(task_id)

    assert repository.recover_stale_running_tasks(stale_after=timedelta(hours=1)) == []


def test_group_context_is_isolated_per_group(repository: QueueRepository) -> None:
    first = _running(repository, "Create a.ts", task_group_id="group-a")
    repository.append_conversation(
        task_id=first,
        role=ConversationRole.ASSISTANT,
        content="Created a.ts",
    )
    repository.update_status(
        first,
        QueueStatus.COMPLETE,
        output="Created a.ts",
        files_modified=["a.ts"],
    )
    other = _running(repository, "Create b.ts", task_group_id="group-b")
    repository.append_conversation(
        task_id=other,
        role=ConversationRole.ASSISTANT,
        content="Created b.ts",
    )
    repository.update_status(
        other,
        QueueStatus.COMPLETE,
        output="Created b.ts",
        files_modified=["b.ts"],
    )
    current = repository.enqueue(QueueItemCreate(prompt="Extend a.ts", task_group_id="group-a"))

    context = repository.get_task_group_context("group-a", exclude_task_id=current.task_id)

    assert [entry.content for entry in context.conversation_history] == ["Created a.ts"]
    assert context.working_files == ["a.ts"]
    assert context.last_task_result is not None
    assert context.last_task_result.task_id == first
    assert context.last_task_result.status == QueueStatus.COMPLETE
    assert [task.task_id for task in repository.list_by_task_group("group-a")] == [
        first,
        current.task_id,
    ]


def test_list_task_groups_counts_tasks(repository: QueueRepository) -> None:
    repository.enqueue(QueueItemCreate(prompt="one", task_group_id="group-a"))
    repository.enqueue(QueueItemCreate(prompt="two", task_group_id="group-a"))
    repository.enqueue(QueueItemCreate(prompt="three", task_group_id="group-b"))

    groups = {group.task_group_id: group.task_count for group in repository.list_task_groups()}

    assert groups == {"group-a": 2, "group-b": 1}


def test_task_details_record_every_transition(repository: QueueRepository) -> None:
    task_id = _running(repository, "Create a.ts")
    repository.update_status(task_id, QueueStatus.ERROR, error_message="boom")

    details = repository.get_task_details(task_id)

    assert details is not None
    assert [event.event_type for event in details.events] == [
        "enqueued",
        "claimed",
        "status_changed",
    ]
    last = details.events[-1]
    assert (last.status_from, last.status_to) == (QueueStatus.RUNNING, QueueStatus.ERROR)
    assert last.details == {"error_message": "boom"}
    assert details.task.error_message == "boom"


def test_append_conversation_rejects_unknown_task(repository: QueueRepository) -> None:
    with pytest.raises(RuntimeError, match="Task not found"):
        repository.append_conversation(
            task_id="missing",
            role=ConversationRole.USER,
            content="hello",
        )


def test_task_record_is_json_serializable(repository: QueueRepository) -> None:
    task_id = _running(repository, "Create a.ts", session_id="s1")
    repository.append_conversation(
        task_id=task_id,
        role=ConversationRole.ASSISTANT,
        content="Created a.ts",
    )
    repository.update_status(task_id, QueueStatus.COMPLETE, files_modified=["a.ts"])
    stored = repository.get_task(task_id)
    assert stored is not None

    record = json.loads(json.dumps(stored.to_record()))

    assert record["status"] == "complete"
    assert record["session_id"] == "s1"
    assert record["files_modified"] == ["a.ts"]
    assert record["clarification_deferred_at"] is None
    assert [entry["role"] for entry in record["conversation_history"]] == ["assistant"]


def test_plan_steps_gate_claims_until_earlier_steps_finish(repository: QueueRepository) -> None:
    first = repository.enqueue(QueueItemCreate(prompt="a", plan_id="plan-1", plan_step=1))
    second = repository.enqueue(QueueItemCreate(prompt="b", plan_id="plan-1", plan_step=1))
    third = repository.enqueue(QueueItemCreate(prompt="c", plan_id="plan-1", plan_step=2))
    unplanned = repository.enqueue(QueueItemCreate(prompt="d"))

    claimed = [repository.claim(worker_id="worker-a") for _ in range(3)]

    assert [item.task_id if item else None for item in claimed] == [
        first.task_id,
        second.task_id,
        unplanned.task_id,
    ]
    assert repository.claim(worker_id="worker-a") is None

    repository.update_status(first.task_id, QueueStatus.COMPLETE)
    assert repository.claim(worker_id="worker-a") is None

    repository.update_status(second.task_id, QueueStatus.ERROR, error_message="boom")
    released = repository.claim(worker_id="worker-a")
    assert released is not None
    assert released.task_id == third.task_id
    assert released.plan_step == 2


def test_other_plans_are_not_blocked_by_a_running_step(repository: QueueRepository) -> None:
    repository.enqueue(QueueItemCreate(prompt="a", plan_id="plan-1", plan_step=1))
    repository.enqueue(QueueItemCreate(prompt="b", plan_id="plan-1", plan_step=2))
    other = repository.enqueue(QueueItemCreate(prompt="c", plan_id="plan-2", plan_step=2))

    repository.claim(worker_id="worker-a")
    claimed = repository.claim(worker_id="worker-b")

    assert claimed is not None
    assert claimed.task_id == other.task_id
