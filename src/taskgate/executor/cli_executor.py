"""Subprocess-based executor for CLI coding agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from taskgate.errors import ExecutorError
from taskgate.executor.base import (
    ExecutorResult,
    ExecutorStatus,
    ExecutorTask,
    TerminationCause,
    VerifiedFile,
)

logger = logging.getLogger(__name__)

RUNS_DIR_NAME = ".taskgate"
PREVIEW_CHARS = 100
PREVIEW_MAX_FILE_BYTES = 10_000
TIMEOUT_EXIT_CODE = 124
SKIPPED_DIR_NAMES = frozenset({"node_modules", "__pycache__"})
SUCCESS_CLAIM_WORDS: tuple[str, ...] = ("Created", "Updated", "Modified")

FileSnapshot = dict[str, tuple[int, int]]


@dataclass(slots=True)
class _ProcessOutcome:
    exit_code: int
    terminated_by: TerminationCause | None
    timeout_extension_seconds: float


class CliAgentExecutor:
    """Run a shell-free command template per prompt and verify its file changes.

    The template may reference ``{prompt}``, ``{prompt_file}`` and ``{workdir}``.
    Stdout and stderr are captured under ``<workdir>/.taskgate/runs/<task id>``,
    which the file snapshot ignores.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        timeout_seconds: float = 600.0,
        soft_timeout_seconds: float = 60.0,
        silence_log_interval_seconds: float = 30.0,
        max_timeout_extension_seconds: float = 300.0,
        poll_interval_seconds: float = 0.1,
        shutdown_requested: Callable[[], bool] | None = None,
        graceful_shutdown_seconds: float = 30.0,
    ) -> None:
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds
        self.soft_timeout_seconds = soft_timeout_seconds
        self.silence_log_interval_seconds = silence_log_interval_seconds
        self.max_timeout_extension_seconds = max_timeout_extension_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.shutdown_requested = shutdown_requested
        self.graceful_shutdown_seconds = graceful_shutdown_seconds

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        started = time.monotonic()
        workdir = task.working_dir
        workdir.mkdir(parents=True, exist_ok=True)
        run_dir = workdir / RUNS_DIR_NAME / "runs" / task.id
        run_dir.mkdir(parents=True, exist_ok=True)
        prompt_file = run_dir / "prompt.txt"
        prompt_file.write_text(task.prompt, "utf-8")
        stdout_path = run_dir / "stdout.log"
        stderr_path = run_dir / "stderr.log"

        try:
            run_args = _build_run_args(
                command_template=self.command_template,
                prompt=task.prompt,
                prompt_file=prompt_file,
                workdir=workdir,
            )
        except ExecutorError as error:
            logger.error("Cannot render command for task %s: %s", task.id, error)
            return _error_result(str(error), started=started)

        env = os.environ.copy()
        env["TASKGATE_TASK_ID"] = task.id
        env["CI"] = "true"
        env["NO_COLOR"] = "1"

        files_before = snapshot_files(workdir)
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                outcome = self._run_process(
                    run_args=run_args,
                    cwd=workdir,
                    env=env,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    stdout_path=stdout_path,
                    stderr_path=stderr_path,
                    task_id=task.id,
                )
        except FileNotFoundError:
            logger.error("Agent command not found for task %s: %s", task.id, run_args[0])
            return _error_result(f"Agent command not found: {run_args[0]}", started=started)
        except OSError as error:
            logger.error("Agent command failed to start for task %s: %s", task.id, error)
            return _error_result(f"Agent command failed to start: {error}", started=started)

        output = _read_text(stdout_path)
        error_output = _read_text(stderr_path)
        duration_ms = int((time.monotonic() - started) * 1000)

        if outcome.terminated_by is not None:
            if outcome.terminated_by == TerminationCause.TIMEOUT:
                limit = self.timeout_seconds + outcome.timeout_extension_seconds
                reason = f"Execution timeout after {limit:.0f}s"
            else:
                reason = "Execution stopped by shutdown request"
            if error_output.strip():
                reason = f"{reason}; stderr: {error_output.strip()}"
            return ExecutorResult(
                executed=False,
                output=output,
                status=ExecutorStatus.ERROR,
                error=reason,
                duration_ms=duration_ms,
                executor_blocked=True,
                blocked_reason=outcome.terminated_by.value,
                terminated_by=outcome.terminated_by,
            )

        files_modified = detect_modified_files(files_before, snapshot_files(workdir))
        verified_files, unverified_files = verify_files(workdir, files_modified)
        status = _resolve_status(
            exit_code=outcome.exit_code,
            output=output,
            verified_files=verified_files,
            unverified_files=unverified_files,
        )
        logger.info(
            "Task %s finished: exit=%s status=%s verified=%d unverified=%d",
            task.id,
            outcome.exit_code,
            status.value,
            len(verified_files),
            len(unverified_files),
        )
        return ExecutorResult(
            executed=outcome.exit_code == 0,
            output=output,
            status=status,
            error=error_output or None,
            files_modified=files_modified,
            duration_ms=duration_ms,
            verified_files=verified_files,
            unverified_files=unverified_files,
        )

    def _run_process(  # noqa: PLR0913
        self,
        *,
        run_args: list[str],
        cwd: Path,
        env: dict[str, str],
        stdout_handle,
        stderr_handle,
        stdout_path: Path,
        stderr_path: Path,
        task_id: str,
    ) -> _ProcessOutcome:
        process = subprocess.Popen(  # noqa: S603
            run_args,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=stdout_handle,
            stderr=stderr_handle,
            text=True,
        )
        start = time.monotonic()
        deadline = start + self.timeout_seconds
        extension_used = 0.0
        last_output_size = 0
        last_output_at = start
        last_silence_log_at = start
        shutdown_deadline: float | None = None

        while True:
            returncode = process.poll()
            if returncode is not None:
                return _ProcessOutcome(returncode, None, extension_used)

            now = time.monotonic()
            output_size = _file_size(stdout_path) + _file_size(stderr_path)
            if output_size != last_output_size:
                last_output_size = output_size
                last_output_at = now

            silent_for = now - last_output_at
            if (
                silent_for >= self.soft_timeout_seconds
                and now - last_silence_log_at >= self.silence_log_interval_seconds
            ):
                last_silence_log_at = now
                logger.warning(
                    "Task %s: no agent output for %.0fs (elapsed %.0fs)",
                    task_id,
                    silent_for,
                    now - start,
                )

            if now >= deadline:
                budget = self.max_timeout_extension_seconds - extension_used
                if budget > 0 and silent_for < self.soft_timeout_seconds:
                    step = min(budget, max(self.soft_timeout_seconds, 1.0))
                    deadline += step
                    extension_used += step
                    logger.info(
                        "Task %s: output still flowing, extending timeout by %.0fs",
                        task_id,
                        step,
                    )
                else:
                    logger.warning("Task %s: timeout after %.0fs", task_id, now - start)
                    _terminate_process(process)
                    return _ProcessOutcome(
                        TIMEOUT_EXIT_CODE,
                        TerminationCause.TIMEOUT,
                        extension_used,
                    )

            if self.shutdown_requested is not None and self.shutdown_requested():
                if shutdown_deadline is None:
                    shutdown_deadline = now + max(0.0, self.graceful_shutdown_seconds)
                if now >= shutdown_deadline:
                    _terminate_process(process)
                    return _ProcessOutcome(
                        TIMEOUT_EXIT_CODE,
                        TerminationCause.SHUTDOWN,
                        extension_used,
                    )

            time.sleep(self.poll_interval_seconds)


def _build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    workdir: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutorError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ExecutorError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            workdir=shlex.quote(str(workdir)),
        )
    except (KeyError, IndexError) as error:
        raise ExecutorError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ExecutorError("Agent command template rendered empty command.", transient=False)
    return argv


def snapshot_files(root: Path) -> FileSnapshot:
    """Map relative file paths to (mtime_ns, size), skipping hidden entries."""

    snapshot: FileSnapshot = {}
    if not root.is_dir():
        return snapshot
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [
            name for name in dirnames if not name.startswith(".") and name not in SKIPPED_DIR_NAMES
        ]
        for filename in filenames:
            if filename.startswith("."):
                continue
            path = Path(dirpath) / filename
            try:
                stat = path.stat()
            except OSError:
                continue
            snapshot[path.relative_to(root).as_posix()] = (stat.st_mtime_ns, stat.st_size)
    return snapshot


def detect_modified_files(before: FileSnapshot, after: FileSnapshot) -> list[str]:
    return sorted(path for path, state in after.items() if before.get(path) != state)


def verify_files(root: Path, paths: list[str]) -> tuple[list[VerifiedFile], list[str]]:
    """Confirm each path on disk; missing ones are reported as unverified."""

    verified: list[VerifiedFile] = []
    unverified: list[str] = []
    for relative in paths:
        path = root / relative
        try:
            stat = path.stat()
        except OSError:
            unverified.append(relative)
            continue
        preview: str | None = None
        if stat.st_size < PREVIEW_MAX_FILE_BYTES:
            try:
                preview = path.read_text("utf-8")[:PREVIEW_CHARS]
            except (OSError, UnicodeDecodeError):
                preview = None
        verified.append(
            VerifiedFile(path=relative, exists=True, size=stat.st_size, content_preview=preview),
        )
    return verified, unverified


def _resolve_status(
    *,
    exit_code: int,
    output: str,
    verified_files: list[VerifiedFile],
    unverified_files: list[str],
) -> ExecutorStatus:
    if exit_code != 0:
        return ExecutorStatus.ERROR
    if unverified_files:
        return ExecutorStatus.NO_EVIDENCE
    if any(verified.exists for verified in verified_files):
        return ExecutorStatus.COMPLETE
    if any(word in output for word in SUCCESS_CLAIM_WORDS):
        return ExecutorStatus.INCOMPLETE
    return ExecutorStatus.NO_EVIDENCE


def _error_result(message: str, *, started: float) -> ExecutorResult:
    return ExecutorResult(
        executed=False,
        output="",
        status=ExecutorStatus.ERROR,
        error=message,
        duration_ms=int((time.monotonic() - started) * 1000),
    )


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _read_text(path: Path) -> str:
    try:
        return path.read_text("utf-8", errors="replace")
    except OSError:
        return ""


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
