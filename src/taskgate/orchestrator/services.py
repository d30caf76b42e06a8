"""Use-case services for the task queue."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from taskgate.orchestrator.models import QueueItemCreate, QueueItemView
from taskgate.orchestrator.repository import QueueRepository
from taskgate.planning import ExecutionPlan, ExecutionStrategy, PlanningSubtask, TaskPlanner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmitPrompt:
    """High-level command to plan a prompt and enqueue its work."""

    prompt: str
    session_id: str = "default"
    task_group_id: str | None = None


@dataclass(slots=True)
class Submission:
    plan: ExecutionPlan
    task_group_id: str
    tasks: list[QueueItemView]


class OrchestratorService:
    """Coordinates planning and queue insert."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        planner: TaskPlanner,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.repository = repository
        self.planner = planner
        self._id_factory = id_factory or (lambda: str(uuid4()))

    def submit(self, command: SubmitPrompt) -> Submission:
        """Plan the prompt and enqueue one task per subtask in a single task group.

        Unchunked plans enqueue the prompt itself. Chunked plans enqueue subtasks in
        topological order, falling back to extraction order when the graph is cyclic.
        """

        if not command.prompt.strip():
            raise ValueError("Prompt must not be empty.")

        task_group_id = command.task_group_id or self._id_factory()
        plan = self.planner.plan(task_group_id, command.prompt)
        chunking = plan.chunking_recommendation

        if not chunking.should_chunk:
            task = self.repository.enqueue(
                QueueItemCreate(
                    prompt=command.prompt,
                    session_id=command.session_id,
                    task_group_id=task_group_id,
                    plan_id=plan.plan_id,
                ),
            )
            return Submission(plan=plan, task_group_id=task_group_id, tasks=[task])

        subtasks = _ordered_subtasks(plan)
        steps = _plan_steps(plan, subtasks)
        tasks = [
            self.repository.enqueue(
                QueueItemCreate(
                    prompt=_subtask_prompt(
                        subtask,
                        index=index,
                        total=len(subtasks),
                        original=command.prompt,
                    ),
                    session_id=command.session_id,
                    task_group_id=task_group_id,
                    plan_id=plan.plan_id,
                    subtask_id=subtask.id,
                    plan_step=steps[subtask.id],
                ),
            )
            for index, subtask in enumerate(subtasks, start=1)
        ]
        logger.info(
            "Enqueued %d subtasks for plan %s in group %s (%s)",
            len(tasks),
            plan.plan_id,
            task_group_id,
            plan.execution_strategy.value,
        )
        return Submission(plan=plan, task_group_id=task_group_id, tasks=tasks)


def _ordered_subtasks(plan: ExecutionPlan) -> list[PlanningSubtask]:
    subtasks = list(plan.chunking_recommendation.subtasks)
    analysis = plan.dependency_analysis
    if analysis is None or analysis.has_cycles:
        return subtasks
    by_id = {subtask.id: subtask for subtask in subtasks}
    return [by_id[subtask_id] for subtask_id in analysis.topological_order]


def _plan_steps(plan: ExecutionPlan, subtasks: list[PlanningSubtask]) -> dict[str, int]:
    """Claim step per subtask; a step starts once all lower steps are terminal.

    Sequential plans get one step per subtask. Mixed and parallel plans run each
    parallelizable group as one step.
    """

    analysis = plan.dependency_analysis
    if plan.execution_strategy == ExecutionStrategy.SEQUENTIAL:
        return {subtask.id: step for step, subtask in enumerate(subtasks, start=1)}
    if analysis is None:
        return {subtask.id: 1 for subtask in subtasks}
    return {
        subtask_id: step
        for step, group in enumerate(analysis.parallelizable_groups, start=1)
        for subtask_id in group
    }


def _subtask_prompt(subtask: PlanningSubtask, *, index: int, total: int, original: str) -> str:
    return (
        f"{subtask.description}\n\n"
        f"This is step {index} of {total} of the following request:\n{original}"
    )
