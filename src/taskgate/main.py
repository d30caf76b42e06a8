"""CLI entrypoint for taskgate."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from taskgate import __version__
from taskgate.errors import TaskgateError
from taskgate.orchestrator.controllers import (
    CancelCommand,
    EnqueueCommand,
    InspectTaskCommand,
    ListGroupsCommand,
    ListTasksCommand,
    OrchestratorCliController,
    PlanCommand,
    ReplyCommand,
    WorkerCommand,
)
from taskgate.orchestrator.models import QueueStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = OrchestratorCliController()

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="taskgate")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging level for diagnostics on stderr.",
)
def taskgate(log_level: str) -> None:
    """Plan, queue and quality-gate coding agent tasks."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@taskgate.command("plan")
@click.option("--prompt", required=True, help="Task prompt to size and split.")
def plan(prompt: str) -> None:
    """Show the execution plan for a prompt without enqueueing it."""

    _invoke(CONTROLLER.plan, PlanCommand(prompt=prompt))


@taskgate.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--prompt", required=True, help="Task prompt.")
@click.option(
    "--session-id",
    default="default",
    show_default=True,
    help="Caller session the tasks belong to.",
)
@click.option(
    "--task-group-id",
    default=None,
    help="Existing task group to join. A new group is created when omitted.",
)
def enqueue(
    db_path: Path | None,
    prompt: str,
    session_id: str,
    task_group_id: str | None,
) -> None:
    """Plan a prompt and enqueue one task per subtask."""

    _invoke(
        CONTROLLER.enqueue,
        EnqueueCommand(
            db_path=db_path,
            prompt=prompt,
            session_id=session_id,
            task_group_id=task_group_id,
        ),
    )


@taskgate.group()
def tasks() -> None:
    """Queue inspection and operator actions."""


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in QueueStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--task-group-id", default=None, help="Only tasks of this group.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(
    db_path: Path | None,
    status: str | None,
    task_group_id: str | None,
    limit: int,
) -> None:
    """List queued and finished tasks."""

    _invoke(
        CONTROLLER.list_tasks,
        ListTasksCommand(
            db_path=db_path,
            status=status,
            task_group_id=task_group_id,
            limit=limit,
        ),
    )


@tasks.command("groups")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max groups to print.",
)
def tasks_groups(db_path: Path | None, limit: int) -> None:
    """List task groups with their task counts."""

    _invoke(CONTROLLER.list_groups, ListGroupsCommand(db_path=db_path, limit=limit))


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with conversation and event history."""

    _invoke(CONTROLLER.inspect_task, InspectTaskCommand(db_path=db_path, task_id=task_id))


@tasks.command("reply")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id awaiting a response.")
@click.option("--message", required=True, help="Answer to the task's question.")
def tasks_reply(db_path: Path | None, task_id: str, message: str) -> None:
    """Answer a clarification question and re-queue the task."""

    _invoke(
        CONTROLLER.reply,
        ReplyCommand(db_path=db_path, task_id=task_id, reply=message),
    )


@tasks.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_cancel(db_path: Path | None, task_id: str) -> None:
    """Cancel a running task."""

    _invoke(CONTROLLER.cancel, CancelCommand(db_path=db_path, task_id=task_id))


@taskgate.group()
def worker() -> None:
    """Queue worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one claim-execute cycle or loop until idle.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed tasks in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before the loop exits.",
)
@click.option(
    "--command",
    "command_template",
    default=None,
    help=(
        "Agent command template. Supports {prompt}, {prompt_file} and {workdir}. "
        "If omitted, TASKGATE_EXECUTOR_COMMAND is used."
    ),
)
@click.option(
    "--workdir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory the agent works in. Defaults to TASKGATE_WORKDIR.",
)
def worker_run(  # noqa: PLR0913
    db_path: Path | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int,
    command_template: str | None,
    workdir: Path | None,
) -> None:
    """Run the queue worker against an external agent CLI."""

    _invoke(
        CONTROLLER.run_worker,
        WorkerCommand(
            db_path=db_path,
            once=once,
            max_tasks=max_tasks,
            command_template=command_template,
            workdir=workdir,
            max_idle_polls=max_idle_polls,
        ),
    )


def _invoke(action: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = action(command)
    except (TaskgateError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskgate()
