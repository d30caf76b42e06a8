"""Execution-plan synthesis and the traced planner facade."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from taskgate.planning.chunking import determine_chunking
from taskgate.planning.dependencies import analyze_dependencies
from taskgate.planning.estimator import estimate_task_size
from taskgate.planning.models import (
    ChunkingRecommendation,
    DependencyAnalysis,
    ExecutionMode,
    ExecutionPlan,
    ExecutionStrategy,
    PlannerConfig,
    SizeEstimation,
)
from taskgate.storage.common import utc_now
from taskgate.trace import TraceSink, emit_safely

logger = logging.getLogger(__name__)

SUBTASK_DURATION_MS = 30_000
PARALLELISM_DISCOUNT = 0.7
COMPLEXITY_DURATION_FACTOR = 0.5


def generate_execution_plan(  # noqa: PLR0913
    task_id: str,
    prompt: str,
    config: PlannerConfig,
    *,
    plan_id: str | None = None,
    created_at: datetime | None = None,
    size: SizeEstimation | None = None,
    chunking: ChunkingRecommendation | None = None,
) -> ExecutionPlan:
    """Compose size estimation, chunking and dependency analysis into a plan."""

    size = size or estimate_task_size(prompt)
    chunking = chunking or determine_chunking(prompt, size, config)

    analysis: DependencyAnalysis | None = None
    if chunking.should_chunk and config.enable_dependency_analysis:
        analysis = analyze_dependencies(chunking.subtasks)

    return ExecutionPlan(
        plan_id=plan_id or str(uuid4()),
        task_id=task_id,
        created_at=created_at or utc_now(),
        size_estimation=size,
        chunking_recommendation=chunking,
        dependency_analysis=analysis,
        execution_strategy=resolve_strategy(chunking, analysis),
        estimated_duration_ms=estimate_duration_ms(size, chunking),
    )


def resolve_strategy(
    chunking: ChunkingRecommendation,
    analysis: DependencyAnalysis | None,
) -> ExecutionStrategy:
    """Pick the plan strategy; a cyclic graph never yields a parallel strategy."""

    if not chunking.should_chunk:
        return ExecutionStrategy.SINGLE
    if analysis is not None:
        groups = analysis.parallelizable_groups
        if analysis.has_cycles or all(len(group) == 1 for group in groups):
            return ExecutionStrategy.SEQUENTIAL
        if len(groups) > 1 and any(len(group) > 1 for group in groups):
            return ExecutionStrategy.MIXED
    if chunking.execution_mode == ExecutionMode.PARALLEL:
        return ExecutionStrategy.PARALLEL
    return ExecutionStrategy.SEQUENTIAL


def estimate_duration_ms(size: SizeEstimation, chunking: ChunkingRecommendation) -> int:
    if chunking.should_chunk:
        return round(SUBTASK_DURATION_MS * len(chunking.subtasks) * PARALLELISM_DISCOUNT)
    return round(SUBTASK_DURATION_MS * size.complexity_score * COMPLEXITY_DURATION_FACTOR)


class TaskPlanner:
    """Plan prompts and report each planning stage to a trace sink."""

    def __init__(
        self,
        config: PlannerConfig | None = None,
        *,
        trace_sink: TraceSink | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.config = config or PlannerConfig()
        self.trace_sink = trace_sink
        self._id_factory = id_factory or (lambda: str(uuid4()))

    def plan(self, task_id: str, prompt: str) -> ExecutionPlan:
        self._emit("PLANNING_START", {"task_id": task_id, "prompt_length": len(prompt)})

        size = estimate_task_size(prompt)
        self._emit("SIZE_ESTIMATION", {"task_id": task_id, **size.to_dict()})

        chunking = determine_chunking(prompt, size, self.config)
        self._emit(
            "CHUNKING_DECISION",
            {
                "task_id": task_id,
                "should_chunk": chunking.should_chunk,
                "reason": chunking.reason,
                "subtask_count": len(chunking.subtasks),
                "execution_mode": (
                    chunking.execution_mode.value if chunking.execution_mode else None
                ),
            },
        )

        plan = generate_execution_plan(
            task_id,
            prompt,
            self.config,
            plan_id=self._id_factory(),
            size=size,
            chunking=chunking,
        )
        if plan.dependency_analysis is not None:
            self._emit(
                "DEPENDENCY_ANALYSIS",
                {"task_id": task_id, **plan.dependency_analysis.to_dict()},
            )
        self._emit(
            "EXECUTION_PLAN",
            {
                "task_id": task_id,
                "plan_id": plan.plan_id,
                "execution_strategy": plan.execution_strategy.value,
                "estimated_duration_ms": plan.estimated_duration_ms,
            },
        )
        self._emit("PLANNING_END", {"task_id": task_id, "plan_id": plan.plan_id})
        logger.debug(
            "Planned task %s: strategy=%s size=%s subtasks=%d",
            task_id,
            plan.execution_strategy.value,
            size.size_category.value,
            len(chunking.subtasks),
        )
        return plan

    def quick_size_check(self, prompt: str) -> SizeEstimation:
        """Size estimate without chunking or tracing."""

        return estimate_task_size(prompt)

    def should_chunk(self, prompt: str) -> bool:
        size = estimate_task_size(prompt)
        return determine_chunking(prompt, size, self.config).should_chunk

    def _emit(self, event_type: str, payload: dict[str, object]) -> None:
        emit_safely(self.trace_sink, event_type, payload)
