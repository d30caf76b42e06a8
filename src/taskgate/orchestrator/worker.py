"""Queue worker that runs claimed tasks through the review loop."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from taskgate.executor.base import Executor, ExecutorTask
from taskgate.executor.cli_executor import CliAgentExecutor
from taskgate.orchestrator.models import (
    ConversationRole,
    QueueItemView,
    QueueStatus,
    StatusUpdateResult,
)
from taskgate.orchestrator.prompting import assemble_task_prompt
from taskgate.orchestrator.question_detector import detect_questions, extract_question
from taskgate.orchestrator.repository import QueueRepository
from taskgate.review.loop import ReviewLoopExecutor
from taskgate.review.models import ReviewFinalStatus, ReviewLoopConfig, ReviewLoopResult
from taskgate.review.prompts import ModificationPromptRenderer
from taskgate.trace import TraceSink, emit_safely

logger = logging.getLogger(__name__)

_HEARTBEAT_EVENTS = frozenset({"ITERATION_START", "ITERATION_END"})


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    incomplete: int = 0
    failed: int = 0
    awaiting_response: int = 0
    deferred: int = 0
    recovered: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.incomplete += other.incomplete
        self.failed += other.failed
        self.awaiting_response += other.awaiting_response
        self.deferred += other.deferred
        self.recovered += other.recovered
        self.idle_polls += other.idle_polls


class _HeartbeatSink:
    """Refreshes the running task on iteration boundaries and forwards every event."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        task_id: str,
        inner: TraceSink | None,
    ) -> None:
        self.repository = repository
        self.task_id = task_id
        self.inner = inner

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type in _HEARTBEAT_EVENTS:
            self.repository.touch_task(self.task_id)
        emit_safely(self.inner, event_type, payload)


class QueueWorker:
    """Consumes queued tasks and executes them under the quality gate."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        executor: Executor,
        worker_id: str,
        workdir: Path,
        review_config: ReviewLoopConfig | None = None,
        trace_sink: TraceSink | None = None,
        renderer: ModificationPromptRenderer | None = None,
        poll_interval_seconds: float = 2.0,
        stale_after_seconds: int = 3_600,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.worker_id = worker_id
        self.workdir = workdir
        self.review_config = review_config or ReviewLoopConfig()
        self.trace_sink = trace_sink
        self.renderer = renderer
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self._sleep = sleep
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self._current_task_id: str | None = None
        if isinstance(executor, CliAgentExecutor) and executor.shutdown_requested is None:
            executor.shutdown_requested = lambda: self._stop_requested

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        summary.recovered = len(self._recover_stale_tasks())
        task = self.repository.claim(worker_id=self.worker_id)
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._current_task_id = task.task_id
        try:
            self._process(task=task, summary=summary)
        finally:
            self._current_task_id = None
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run until the queue stays idle, ``max_tasks`` is reached or a stop is requested.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            max_idle_polls: How many consecutive empty polls before exiting.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        logger.info(
            "Worker %s stop requested (%s); current task: %s",
            self.worker_id,
            signal_name,
            self._current_task_id or "-",
        )

    def _recover_stale_tasks(self) -> list[str]:
        if self.stale_after_seconds <= 0:
            return []
        return self.repository.recover_stale_running_tasks(
            stale_after=timedelta(seconds=self.stale_after_seconds),
        )

    def _process(self, *, task: QueueItemView, summary: WorkerRunSummary) -> None:
        try:
            context = self.repository.get_task_group_context(
                task.task_group_id,
                exclude_task_id=task.task_id,
            )
            prompt = assemble_task_prompt(task, context)
            loop = ReviewLoopExecutor(
                self.executor,
                self.review_config,
                trace_sink=_HeartbeatSink(
                    repository=self.repository,
                    task_id=task.task_id,
                    inner=self.trace_sink,
                ),
                renderer=self.renderer,
                sleep=self._sleep,
            )
            result = loop.execute_with_review(
                ExecutorTask(id=task.task_id, prompt=prompt, working_dir=self.workdir),
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Task %s failed before review completed", task.task_id)
            self._report(
                self.repository.update_status(
                    task.task_id,
                    QueueStatus.ERROR,
                    error_message=f"{type(error).__name__}: {error}",
                ),
            )
            summary.failed = 1
            return

        self._apply_result(task=task, result=result, summary=summary)

    def _apply_result(
        self,
        *,
        task: QueueItemView,
        result: ReviewLoopResult,
        summary: WorkerRunSummary,
    ) -> None:
        final = result.final_output
        if final.output:
            self.repository.append_conversation(
                task_id=task.task_id,
                role=ConversationRole.ASSISTANT,
                content=final.output,
            )

        if result.final_status == ReviewFinalStatus.COMPLETE:
            self._report(
                self.repository.update_status(
                    task.task_id,
                    QueueStatus.COMPLETE,
                    output=final.output,
                    files_modified=final.files_modified,
                ),
            )
            summary.completed = 1
            return

        if result.final_status == ReviewFinalStatus.INCOMPLETE:
            detection = detect_questions(final.output)
            if detection.has_questions:
                outcome = self.repository.set_awaiting_response(
                    task.task_id,
                    question=extract_question(final.output),
                )
                if outcome.success:
                    summary.awaiting_response = 1
                    return
                if outcome.deferred:
                    summary.deferred = 1
                    return
                self._report(outcome)
                summary.failed = 1
                return

            self._report(
                self.repository.update_status(
                    task.task_id,
                    QueueStatus.INCOMPLETE,
                    error_message=_exhaustion_message(result),
                    output=final.output,
                    files_modified=final.files_modified,
                ),
            )
            summary.incomplete = 1
            return

        self._report(
            self.repository.update_status(
                task.task_id,
                QueueStatus.ERROR,
                error_message=final.error or _exhaustion_message(result),
                output=final.output,
                files_modified=final.files_modified,
            ),
        )
        summary.failed = 1

    def _report(self, outcome: StatusUpdateResult) -> None:
        if outcome.success:
            logger.info(
                "Task %s: %s -> %s",
                outcome.task_id,
                outcome.old_status.value if outcome.old_status else "-",
                outcome.new_status.value if outcome.new_status else "-",
            )
            return
        logger.warning(
            "Task %s status update rejected (%s): %s",
            outcome.task_id,
            outcome.error_code.value if outcome.error_code else "-",
            outcome.message,
        )

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            self._sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _exhaustion_message(result: ReviewLoopResult) -> str:
    failed = ", ".join(result.failed_criteria) or "-"
    return (
        f"Review loop ended {result.final_status.value} after {result.total_iterations} "
        f"iteration(s); failed criteria: {failed}"
    )
