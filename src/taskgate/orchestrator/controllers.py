"""Controllers for queue CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from taskgate.config import Settings
from taskgate.errors import StatusUpdateError, TaskNotFoundError
from taskgate.executor.cli_executor import CliAgentExecutor
from taskgate.orchestrator.models import QueueStatus, StatusErrorCode, StatusUpdateResult
from taskgate.orchestrator.repository import QueueRepository
from taskgate.orchestrator.services import OrchestratorService, SubmitPrompt
from taskgate.orchestrator.worker import QueueWorker
from taskgate.planning import ExecutionPlan, TaskPlanner
from taskgate.trace import LoggingTraceSink

PROMPT_PREVIEW_CHARS = 60


@dataclass(slots=True)
class PlanCommand:
    """CLI input for a dry-run plan."""

    prompt: str


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for planning and enqueueing a prompt."""

    db_path: Path | None
    prompt: str
    session_id: str
    task_group_id: str | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    task_group_id: str | None
    limit: int


@dataclass(slots=True)
class ListGroupsCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ReplyCommand:
    """CLI input for answering a task's clarification question."""

    db_path: Path | None
    task_id: str
    reply: str


@dataclass(slots=True)
class CancelCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_tasks: int | None
    command_template: str | None = None
    workdir: Path | None = None
    max_idle_polls: int = 1


class OrchestratorCliController:
    """Coordinates planning, queue, worker and inspection CLI operations."""

    def plan(self, command: PlanCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        plan = TaskPlanner(settings.planner, trace_sink=LoggingTraceSink()).plan(
            "dry-run",
            command.prompt,
        )
        return _plan_lines(plan)

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            service = OrchestratorService(
                repository=repository,
                planner=TaskPlanner(settings.planner, trace_sink=LoggingTraceSink()),
            )
            submission = service.submit(
                SubmitPrompt(
                    prompt=command.prompt,
                    session_id=command.session_id,
                    task_group_id=command.task_group_id,
                ),
            )

        lines = [
            f"Task group: {submission.task_group_id}",
            f"Plan: {submission.plan.plan_id} "
            f"strategy={submission.plan.execution_strategy.value}",
            f"Tasks enqueued: {len(submission.tasks)}",
        ]
        for task in submission.tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} "
                f"subtask={task.subtask_id or '-'}",
            )
        return lines

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            if command.task_group_id is not None:
                tasks = repository.list_by_task_group(command.task_group_id)
                if status_filter is not None:
                    tasks = [task for task in tasks if task.status == status_filter]
                tasks = tasks[: command.limit]
            else:
                tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} group={task.task_group_id} status={task.status.value} "
                f"created_at={task.created_at.isoformat()} "
                f"prompt={_preview(task.prompt)}",
            )
        return lines

    def list_groups(self, command: ListGroupsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            groups = repository.list_task_groups(limit=command.limit)

        lines = [f"Task groups: {len(groups)}"]
        for group in groups:
            lines.append(
                f"  {group.task_group_id} tasks={group.task_count} "
                f"created_at={group.created_at.isoformat()} "
                f"updated_at={group.latest_updated_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Group: {task.task_group_id}",
            f"Session: {task.session_id}",
            f"Status: {task.status.value}",
            f"Worker: {task.worker_id or '-'}",
            f"Plan: {task.plan_id or '-'} subtask={task.subtask_id or '-'}",
            f"Error: {task.error_message or '-'}",
            f"Clarification: {task.clarification or '-'}",
            f"Clarification deferred: {'yes' if task.clarification_deferred else 'no'}",
            f"Files modified: {', '.join(task.files_modified) or '-'}",
            f"Prompt: {task.prompt}",
            f"Conversation: {len(task.conversation_history)}",
        ]
        for entry in task.conversation_history:
            lines.append(
                f"  {entry.created_at.isoformat()} [{entry.role.value}] "
                f"{_preview(entry.content)}",
            )
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def reply(self, command: ReplyCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            outcome = repository.resume_with_response(command.task_id, command.reply)
        _raise_on_failure(outcome)
        return [f"Task resumed: {command.task_id} status={QueueStatus.QUEUED.value}"]

    def cancel(self, command: CancelCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            outcome = repository.update_status(command.task_id, QueueStatus.CANCELLED)
        _raise_on_failure(outcome)
        return [f"Task cancelled: {command.task_id}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.command_template is not None:
            settings.executor.command_template = command.command_template
        if command.workdir is not None:
            settings.worker.workdir = command.workdir
        settings.validate_for_worker()

        executor_settings = settings.executor
        with _repository(settings) as repository:
            worker = QueueWorker(
                repository=repository,
                executor=CliAgentExecutor(
                    command_template=executor_settings.command_template,
                    timeout_seconds=executor_settings.timeout_seconds,
                    soft_timeout_seconds=executor_settings.soft_timeout_seconds,
                    silence_log_interval_seconds=executor_settings.silence_log_interval_seconds,
                    max_timeout_extension_seconds=executor_settings.max_timeout_extension_seconds,
                    graceful_shutdown_seconds=executor_settings.graceful_shutdown_seconds,
                ),
                worker_id=settings.worker.worker_id,
                workdir=settings.worker.workdir,
                review_config=settings.review.to_config(),
                trace_sink=LoggingTraceSink(),
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_after_seconds=settings.worker.stale_after_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_tasks=command.max_tasks,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"incomplete={summary.incomplete} failed={summary.failed} "
            f"awaiting_response={summary.awaiting_response} deferred={summary.deferred} "
            f"recovered={summary.recovered} idle_polls={summary.idle_polls}",
        ]


def _plan_lines(plan: ExecutionPlan) -> list[str]:
    size = plan.size_estimation
    chunking = plan.chunking_recommendation
    lines = [
        f"Plan: {plan.plan_id}",
        f"Size: {size.size_category.value} complexity={size.complexity_score} "
        f"files={size.estimated_file_count} tokens={size.estimated_tokens}",
        f"Strategy: {plan.execution_strategy.value} "
        f"estimated_duration_ms={plan.estimated_duration_ms}",
        f"Chunking: {'yes' if chunking.should_chunk else 'no'} ({chunking.reason})",
    ]
    for subtask in chunking.subtasks:
        depends = ", ".join(subtask.dependencies) or "-"
        lines.append(
            f"  {subtask.id} order={subtask.execution_order} "
            f"complexity={subtask.estimated_complexity} depends_on={depends} "
            f"{_preview(subtask.description)}",
        )
    analysis = plan.dependency_analysis
    if analysis is not None:
        lines.append(f"Cycles: {'yes' if analysis.has_cycles else 'no'}")
        groups = " | ".join(", ".join(group) for group in analysis.parallelizable_groups)
        lines.append(f"Parallel groups: {groups or '-'}")
    return lines


def _raise_on_failure(outcome: StatusUpdateResult) -> None:
    if outcome.success:
        return
    if outcome.error_code == StatusErrorCode.TASK_NOT_FOUND:
        raise TaskNotFoundError(outcome.task_id)
    code = outcome.error_code.value if outcome.error_code is not None else None
    raise StatusUpdateError(
        outcome.message or f"Status update failed for {outcome.task_id}",
        task_id=outcome.task_id,
        error_code=code,
    )


def _preview(text: str) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= PROMPT_PREVIEW_CHARS:
        return flattened
    return flattened[:PROMPT_PREVIEW_CHARS] + "..."


def _parse_status(value: str | None) -> QueueStatus | None:
    if value is None:
        return None
    return QueueStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[QueueRepository]:
    repository = QueueRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
