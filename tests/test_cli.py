from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from taskgate.main import taskgate
from taskgate.orchestrator.models import QueueItemCreate, QueueStatus
from taskgate.orchestrator.repository import QueueRepository

pytestmark = [
    allure.epic("Operator CLI"),
    allure.feature("Plan, Queue, Worker Commands"),
]

NUMBERED_PROMPT = "1. Create file A. 2. Create file B after A is done."
_TASK_LINE = re.compile(r"^\s+(\S+) status=queued subtask=(\S+)$", re.M)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TASKGATE_DB_PATH",
        "TASKGATE_EXECUTOR_COMMAND",
        "TASKGATE_PLANNER_CHUNK_COMPLEXITY_THRESHOLD",
        "TASKGATE_REVIEW_TEMPLATE_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TASKGATE_REVIEW_RETRY_DELAY_SECONDS", "0")


def _enqueue(runner: CliRunner, db_path: Path, prompt: str) -> list[str]:
    result = runner.invoke(taskgate, ["enqueue", "--db-path", str(db_path), "--prompt", prompt])
    assert result.exit_code == 0, result.output
    return [task_id for task_id, _ in _TASK_LINE.findall(result.output)]


def test_plan_prints_size_and_single_strategy() -> None:
    result = CliRunner().invoke(taskgate, ["plan", "--prompt", "Fix a typo"])

    assert result.exit_code == 0, result.output
    assert "Size: XS complexity=2 files=1 tokens=12" in result.output
    assert "Strategy: single estimated_duration_ms=30000" in result.output
    assert "Chunking: no (Size within thresholds (tokens: 12, complexity: 2))" in result.output


def test_plan_shows_subtasks_and_groups_when_chunked(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKGATE_PLANNER_CHUNK_COMPLEXITY_THRESHOLD", "1")

    result = CliRunner().invoke(taskgate, ["plan", "--prompt", NUMBERED_PROMPT])

    assert result.exit_code == 0, result.output
    assert "Chunking: yes" in result.output
    assert "subtask-2 order=2 complexity=3 depends_on=subtask-1" in result.output
    assert "Cycles: no" in result.output
    assert "Parallel groups: subtask-1 | subtask-2" in result.output


def test_enqueue_lists_subtasks_of_one_group(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("TASKGATE_PLANNER_CHUNK_COMPLEXITY_THRESHOLD", "1")
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    result = runner.invoke(
        taskgate,
        ["enqueue", "--db-path", str(db_path), "--prompt", NUMBERED_PROMPT],
    )

    assert result.exit_code == 0, result.output
    assert "Tasks enqueued: 2" in result.output
    assert [subtask for _, subtask in _TASK_LINE.findall(result.output)] == [
        "subtask-1",
        "subtask-2",
    ]
    group_id = re.search(r"^Task group: (\S+)$", result.output, re.M)
    assert group_id is not None

    listed = runner.invoke(
        taskgate,
        ["tasks", "list", "--db-path", str(db_path), "--task-group-id", group_id.group(1)],
    )
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 2" in listed.output

    groups = runner.invoke(taskgate, ["tasks", "groups", "--db-path", str(db_path)])
    assert groups.exit_code == 0, groups.output
    assert f"{group_id.group(1)} tasks=2" in groups.output


def test_worker_runs_echo_agent_and_inspect_shows_history(
    tmp_path: Path,
    echo_agent_command: str,
) -> None:
    db_path = tmp_path / "cli.db"
    workdir = tmp_path / "work"
    runner = CliRunner()
    [task_id] = _enqueue(runner, db_path, "Write a greeting file")

    worker = runner.invoke(
        taskgate,
        [
            "worker",
            "run",
            "--db-path",
            str(db_path),
            "--once",
            "--command",
            echo_agent_command,
            "--workdir",
            str(workdir),
        ],
    )

    assert worker.exit_code == 0, worker.output
    assert "Worker summary: processed=1 completed=1" in worker.output
    assert (workdir / "echo_output.txt").exists()

    inspected = runner.invoke(
        taskgate,
        ["tasks", "inspect", "--db-path", str(db_path), "--task-id", task_id],
    )
    assert inspected.exit_code == 0, inspected.output
    assert "Status: complete" in inspected.output
    assert "Files modified: echo_output.txt" in inspected.output
    assert "[assistant] Created echo_output.txt" in inspected.output
    assert "claimed queued -> running" in inspected.output

    completed = runner.invoke(
        taskgate,
        ["tasks", "list", "--db-path", str(db_path), "--status", "complete"],
    )
    assert "Tasks: 1" in completed.output


def test_worker_requires_agent_command(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        taskgate,
        ["worker", "run", "--db-path", str(tmp_path / "cli.db"), "--once"],
    )

    assert result.exit_code != 0
    assert "An agent command is required" in result.output


def test_reply_requeues_awaiting_task(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    repository = QueueRepository(db_path)
    repository.init_schema()
    task = repository.enqueue(QueueItemCreate(prompt="Set up storage"))
    repository.claim(worker_id="worker-a")
    repository.set_awaiting_response(task.task_id, "Which database?")
    repository.close()

    result = CliRunner().invoke(
        taskgate,
        [
            "tasks",
            "reply",
            "--db-path",
            str(db_path),
            "--task-id",
            task.task_id,
            "--message",
            "PostgreSQL",
        ],
    )

    assert result.exit_code == 0, result.output
    assert f"Task resumed: {task.task_id} status=queued" in result.output
    repository = QueueRepository(db_path)
    stored = repository.get_task(task.task_id)
    repository.close()
    assert stored is not None
    assert stored.status == QueueStatus.QUEUED


def test_reply_to_unknown_task_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        taskgate,
        [
            "tasks",
            "reply",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--task-id",
            "missing",
            "--message",
            "yes",
        ],
    )

    assert result.exit_code != 0
    assert "Task not found: missing" in result.output


def test_cancel_is_refused_for_queued_task(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    [task_id] = _enqueue(runner, db_path, "Write a greeting file")

    result = runner.invoke(
        taskgate,
        ["tasks", "cancel", "--db-path", str(db_path), "--task-id", task_id],
    )

    assert result.exit_code != 0
    assert "Cannot transition from queued to cancelled" in result.output


def test_inspect_unknown_task_reports_not_found(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        taskgate,
        ["tasks", "inspect", "--db-path", str(tmp_path / "cli.db"), "--task-id", "nope"],
    )

    assert result.exit_code == 0
    assert "Task not found: nope" in result.output
