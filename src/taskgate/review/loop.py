"""Bounded execute-judge-correct loop around an executor."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from taskgate.executor.base import Executor, ExecutorResult, ExecutorTask
from taskgate.review.criteria import QualityJudgment, judge_result
from taskgate.review.models import (
    IterationRecord,
    Judgment,
    RejectionDetails,
    ReviewFinalStatus,
    ReviewLoopConfig,
    ReviewLoopResult,
)
from taskgate.review.prompts import ModificationPromptRenderer, build_modification_prompt
from taskgate.storage.common import utc_now
from taskgate.trace import TraceSink, emit_safely

logger = logging.getLogger(__name__)


class ReviewLoopExecutor:
    """Runs an executor until its output passes quality judgment or iterations run out.

    PASS ends the loop with COMPLETE. REJECT re-runs the task with a modification
    prompt. RETRY re-runs the same prompt after ``retry_delay_seconds``.
    Exhaustion ends with INCOMPLETE when ``escalate_on_max`` is set, else ERROR.
    """

    def __init__(  # noqa: PLR0913
        self,
        executor: Executor,
        config: ReviewLoopConfig | None = None,
        *,
        trace_sink: TraceSink | None = None,
        renderer: ModificationPromptRenderer | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.executor = executor
        self.config = config or ReviewLoopConfig()
        self.trace_sink = trace_sink
        self.renderer = renderer
        self._sleep = sleep
        self._clock = clock

    def execute_with_review(self, task: ExecutorTask) -> ReviewLoopResult:
        config = self.config
        history: list[IterationRecord] = []
        current_prompt = task.prompt
        last_result: ExecutorResult | None = None

        self._emit(
            "REVIEW_LOOP_START",
            {
                "task_id": task.id,
                "original_prompt": task.prompt,
                "max_iterations": config.max_iterations,
            },
        )

        for iteration in range(1, config.max_iterations + 1):
            started_at = self._clock()
            self._emit(
                "ITERATION_START",
                {
                    "task_id": task.id,
                    "iteration": iteration,
                    "started_at": started_at.isoformat(),
                    "prompt": current_prompt,
                },
            )

            last_result = self.executor.execute(replace(task, prompt=current_prompt))
            judgment = judge_result(last_result, config)
            self._emit(
                "QUALITY_JUDGMENT",
                {
                    "task_id": task.id,
                    "iteration": iteration,
                    "judgment": judgment.judgment.value,
                    "criteria_results": [item.to_dict() for item in judgment.criteria_results],
                    "criteria_failed": list(judgment.failed_criteria),
                    "judgment_summary": judgment.summary,
                },
            )
            record = IterationRecord(
                iteration=iteration,
                started_at=started_at,
                ended_at=self._clock(),
                judgment=judgment.judgment,
                criteria_results=list(judgment.criteria_results),
            )
            logger.info(
                "Review iteration %d/%d for task %s: %s",
                iteration,
                config.max_iterations,
                task.id,
                judgment.summary,
            )

            if judgment.judgment == Judgment.PASS:
                history.append(record)
                self._end_iteration(task, record)
                self._emit(
                    "REVIEW_LOOP_END",
                    {
                        "task_id": task.id,
                        "total_iterations": iteration,
                        "final_status": ReviewFinalStatus.COMPLETE.value,
                    },
                )
                return ReviewLoopResult(
                    final_status=ReviewFinalStatus.COMPLETE,
                    total_iterations=iteration,
                    iteration_history=history,
                    final_output=last_result,
                )

            if judgment.judgment == Judgment.REJECT:
                record.rejection_details = self._reject(task, iteration, judgment)
                current_prompt = record.rejection_details.modification_prompt
            elif iteration < config.max_iterations and config.retry_delay_seconds > 0:
                self._sleep(config.retry_delay_seconds)

            history.append(record)
            self._end_iteration(task, record)

        if last_result is None:
            raise RuntimeError("Review loop finished without executing the task.")
        final_status = (
            ReviewFinalStatus.INCOMPLETE if config.escalate_on_max else ReviewFinalStatus.ERROR
        )
        failed_criteria = list(
            dict.fromkeys(
                item.criteria_id for item in history[-1].criteria_results if not item.passed
            )
        )
        logger.warning(
            "Review loop for task %s exhausted %d iterations: %s",
            task.id,
            config.max_iterations,
            final_status.value,
        )
        self._emit(
            "REVIEW_LOOP_END",
            {
                "task_id": task.id,
                "total_iterations": config.max_iterations,
                "final_status": final_status.value,
                "escalated": config.escalate_on_max,
            },
        )
        return ReviewLoopResult(
            final_status=final_status,
            total_iterations=config.max_iterations,
            iteration_history=history,
            final_output=last_result,
            escalated=config.escalate_on_max,
            failed_criteria=failed_criteria,
        )

    def _reject(
        self,
        task: ExecutorTask,
        iteration: int,
        judgment: QualityJudgment,
    ) -> RejectionDetails:
        prompt = build_modification_prompt(
            task.prompt,
            judgment.criteria_results,
            judgment.issues,
            goal_drift=judgment.goal_drift,
            renderer=self.renderer,
        )
        details = RejectionDetails(
            failed_criteria=tuple(judgment.failed_criteria),
            detected_issues=tuple(judgment.issues),
            modification_prompt=prompt,
        )
        self._emit(
            "REJECTION_DETAILS",
            {
                "task_id": task.id,
                "iteration": iteration,
                "criteria_failed": list(details.failed_criteria),
                "issues_detected": [issue.to_dict() for issue in details.detected_issues],
            },
        )
        self._emit(
            "MODIFICATION_PROMPT",
            {"task_id": task.id, "iteration": iteration, "modification_prompt": prompt},
        )
        return details

    def _end_iteration(self, task: ExecutorTask, record: IterationRecord) -> None:
        self._emit(
            "ITERATION_END",
            {
                "task_id": task.id,
                "iteration": record.iteration,
                "ended_at": record.ended_at.isoformat(),
                "judgment": record.judgment.value,
            },
        )

    def _emit(self, event_type: str, payload: dict[str, object]) -> None:
        emit_safely(self.trace_sink, event_type, payload)
