"""Deterministic executors for tests and offline demos."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace

from taskgate.executor.base import (
    ExecutorResult,
    ExecutorStatus,
    ExecutorTask,
    TerminationCause,
    VerifiedFile,
)


class _RecordingExecutor:
    def __init__(self, *, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds
        self.calls: list[ExecutorTask] = []

    def _record(self, task: ExecutorTask) -> None:
        self.calls.append(task)
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)

    @property
    def call_count(self) -> int:
        return len(self.calls)


class SuccessExecutor(_RecordingExecutor):
    """Always reports COMPLETE with every claimed file verified."""

    def __init__(
        self,
        *,
        files_modified: Sequence[str] = (),
        verified_files: Sequence[VerifiedFile] = (),
        output: str = "Execution completed successfully",
        delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.files_modified = list(files_modified)
        self.verified_files = list(verified_files)
        self.output = output

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        verified = self.verified_files or [
            VerifiedFile(path=path, exists=True, size=100, content_preview="content")
            for path in self.files_modified
        ]
        return ExecutorResult(
            executed=True,
            output=self.output,
            status=ExecutorStatus.COMPLETE,
            files_modified=list(self.files_modified),
            duration_ms=int(self.delay_seconds * 1000),
            verified_files=list(verified),
        )


class BlockedExecutor(_RecordingExecutor):
    """Always reports BLOCKED, as when an agent waits on an interactive prompt."""

    def __init__(
        self,
        *,
        blocked_reason: str = "INTERACTIVE_PROMPT",
        output: str = "",
        delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.blocked_reason = blocked_reason
        self.output = output

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        return ExecutorResult(
            executed=False,
            output=self.output,
            status=ExecutorStatus.BLOCKED,
            error=f"Executor blocked: {self.blocked_reason}",
            duration_ms=int(self.delay_seconds * 1000),
            executor_blocked=True,
            blocked_reason=self.blocked_reason,
        )


class ErrorExecutor(_RecordingExecutor):
    def __init__(self, *, message: str = "Execution error", delay_seconds: float = 0.0) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.message = message

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        return ExecutorResult(
            executed=False,
            output="",
            status=ExecutorStatus.ERROR,
            error=self.message,
            duration_ms=int(self.delay_seconds * 1000),
        )


class TimeoutExecutor(_RecordingExecutor):
    """Simulates an agent killed by the overall timeout."""

    def __init__(self, *, timeout_seconds: float = 600.0, delay_seconds: float = 0.0) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.timeout_seconds = timeout_seconds

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        return ExecutorResult(
            executed=False,
            output="",
            status=ExecutorStatus.ERROR,
            error=f"Execution timeout after {self.timeout_seconds:.0f}s",
            duration_ms=int(self.timeout_seconds * 1000),
            executor_blocked=True,
            blocked_reason=TerminationCause.TIMEOUT.value,
            terminated_by=TerminationCause.TIMEOUT,
        )


class ScriptedExecutor(_RecordingExecutor):
    """Returns queued results in order; the last one repeats once exhausted."""

    def __init__(self, results: Iterable[ExecutorResult], *, delay_seconds: float = 0.0) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.results = list(results)
        if not self.results:
            raise ValueError("ScriptedExecutor requires at least one result.")

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        index = min(len(self.calls) - 1, len(self.results) - 1)
        return replace(self.results[index])


class PerPromptExecutor(_RecordingExecutor):
    """Picks a result by the first rule whose substring appears in the prompt."""

    def __init__(
        self,
        rules: Sequence[tuple[str, ExecutorResult | Callable[[ExecutorTask], ExecutorResult]]],
        *,
        default: ExecutorResult | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(delay_seconds=delay_seconds)
        self.rules = list(rules)
        self.default = default or ExecutorResult(
            executed=True,
            output="",
            status=ExecutorStatus.NO_EVIDENCE,
        )

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        self._record(task)
        for needle, outcome in self.rules:
            if needle in task.prompt:
                return outcome(task) if callable(outcome) else replace(outcome)
        return replace(self.default)
