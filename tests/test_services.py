from __future__ import annotations

import threading
from pathlib import Path

import allure
import pytest

from taskgate.orchestrator.models import QueueStatus
from taskgate.orchestrator.repository import QueueRepository
from taskgate.orchestrator.services import OrchestratorService, SubmitPrompt
from taskgate.planning import ExecutionStrategy, PlannerConfig, TaskPlanner

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Prompt Submission"),
]

NUMBERED_PROMPT = "1. Create file A. 2. Create file B after A is done."


def _service(
    repository: QueueRepository,
    config: PlannerConfig | None = None,
) -> OrchestratorService:
    return OrchestratorService(
        repository=repository,
        planner=TaskPlanner(config, id_factory=lambda: "plan-1"),
        id_factory=lambda: "group-1",
    )


def test_small_prompt_is_enqueued_as_single_task(repository: QueueRepository) -> None:
    submission = _service(repository).submit(SubmitPrompt(prompt="Fix a typo in README"))

    assert submission.task_group_id == "group-1"
    assert submission.plan.execution_strategy == ExecutionStrategy.SINGLE
    assert len(submission.tasks) == 1
    task = submission.tasks[0]
    assert task.prompt == "Fix a typo in README"
    assert task.plan_id == "plan-1"
    assert task.subtask_id is None
    assert task.status == QueueStatus.QUEUED


def test_chunked_prompt_enqueues_subtasks_in_dependency_order(
    repository: QueueRepository,
) -> None:
    service = _service(repository, PlannerConfig(chunk_complexity_threshold=1))

    submission = service.submit(SubmitPrompt(prompt=NUMBERED_PROMPT, session_id="s1"))

    assert [task.subtask_id for task in submission.tasks] == ["subtask-1", "subtask-2"]
    assert {task.task_group_id for task in submission.tasks} == {"group-1"}
    assert {task.session_id for task in submission.tasks} == {"s1"}
    assert submission.tasks[0].prompt == (
        "Create file A.\n\n"
        f"This is step 1 of 2 of the following request:\n{NUMBERED_PROMPT}"
    )
    claimed = repository.claim(worker_id="worker-a")
    assert claimed is not None
    assert claimed.subtask_id == "subtask-1"


def test_existing_group_is_reused(repository: QueueRepository) -> None:
    submission = _service(repository).submit(
        SubmitPrompt(prompt="Add a README", task_group_id="group-existing"),
    )

    assert submission.task_group_id == "group-existing"
    assert repository.list_by_task_group("group-existing")[0].prompt == "Add a README"


def test_empty_prompt_is_rejected(repository: QueueRepository) -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        _service(repository).submit(SubmitPrompt(prompt="   "))

    assert repository.list_tasks() == []


def test_sequential_subtasks_are_never_claimed_together(
    db_path: Path,
    repository: QueueRepository,
) -> None:
    service = _service(repository, PlannerConfig(chunk_complexity_threshold=1))
    submission = service.submit(SubmitPrompt(prompt=NUMBERED_PROMPT))
    assert submission.plan.execution_strategy == ExecutionStrategy.SEQUENTIAL
    assert [task.plan_step for task in submission.tasks] == [1, 2]

    start = threading.Event()
    claimed: list[str | None] = []
    lock = threading.Lock()

    def _claim(worker_id: str) -> None:
        worker_repository = QueueRepository(db_path)
        try:
            start.wait(timeout=5)
            item = worker_repository.claim(worker_id=worker_id)
            with lock:
                claimed.append(item.subtask_id if item else None)
        finally:
            worker_repository.close()

    threads = [
        threading.Thread(target=_claim, args=(f"worker-{index}",), daemon=True)
        for index in range(3)
    ]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(claimed, key=str) == sorted(["subtask-1", None, None], key=str)

    repository.update_status(submission.tasks[0].task_id, QueueStatus.COMPLETE)
    follow_up = repository.claim(worker_id="worker-a")
    assert follow_up is not None
    assert follow_up.subtask_id == "subtask-2"
