"""Runtime configuration for planning, review and queue workers."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from taskgate.errors import ConfigError
from taskgate.planning.models import PlannerConfig
from taskgate.review.models import ReviewLoopConfig


@dataclass(slots=True)
class ReviewSettings:
    """Review loop settings."""

    max_iterations: int = 3
    retry_delay_seconds: float = 1.0
    escalate_on_max: bool = True
    active_template_id: str | None = None

    def to_config(self) -> ReviewLoopConfig:
        return ReviewLoopConfig(
            max_iterations=self.max_iterations,
            retry_delay_seconds=self.retry_delay_seconds,
            escalate_on_max=self.escalate_on_max,
            active_template_id=self.active_template_id,
        )


@dataclass(slots=True)
class WorkerSettings:
    """Queue worker settings."""

    worker_id: str = "worker"
    workdir: Path = Path(".")
    poll_interval_seconds: float = 2.0
    stale_after_seconds: int = 3_600


@dataclass(slots=True)
class ExecutorSettings:
    """CLI agent executor settings."""

    command_template: str = ""
    timeout_seconds: float = 600.0
    soft_timeout_seconds: float = 60.0
    silence_log_interval_seconds: float = 30.0
    max_timeout_extension_seconds: float = 300.0
    graceful_shutdown_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".taskgate.db")
    sqlite_busy_timeout_ms: int = 5_000
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    review: ReviewSettings = field(default_factory=ReviewSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``TASKGATE_*`` variables with local-development defaults."""

        return cls(
            db_path=db_path or Path(os.getenv("TASKGATE_DB_PATH", ".taskgate.db")),
            sqlite_busy_timeout_ms=_env_int("TASKGATE_SQLITE_BUSY_TIMEOUT_MS", 5000),
            planner=PlannerConfig(
                auto_chunk=_env_bool("TASKGATE_PLANNER_AUTO_CHUNK", default=True),
                chunk_token_threshold=_env_int("TASKGATE_PLANNER_CHUNK_TOKEN_THRESHOLD", 8000),
                chunk_complexity_threshold=_env_int(
                    "TASKGATE_PLANNER_CHUNK_COMPLEXITY_THRESHOLD",
                    6,
                ),
                max_subtasks=_env_int("TASKGATE_PLANNER_MAX_SUBTASKS", 10),
                min_subtasks=_env_int("TASKGATE_PLANNER_MIN_SUBTASKS", 2),
                enable_dependency_analysis=_env_bool(
                    "TASKGATE_PLANNER_DEPENDENCY_ANALYSIS",
                    default=True,
                ),
            ),
            review=ReviewSettings(
                max_iterations=_env_int("TASKGATE_REVIEW_MAX_ITERATIONS", 3),
                retry_delay_seconds=_env_float("TASKGATE_REVIEW_RETRY_DELAY_SECONDS", 1.0),
                escalate_on_max=_env_bool("TASKGATE_REVIEW_ESCALATE_ON_MAX", default=True),
                active_template_id=os.getenv("TASKGATE_REVIEW_TEMPLATE_ID") or None,
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("TASKGATE_WORKER_ID", _default_worker_id()),
                workdir=Path(os.getenv("TASKGATE_WORKDIR", ".")),
                poll_interval_seconds=_env_float("TASKGATE_WORKER_POLL_INTERVAL_SECONDS", 2.0),
                stale_after_seconds=_env_int("TASKGATE_WORKER_STALE_AFTER_SECONDS", 3600),
            ),
            executor=ExecutorSettings(
                command_template=os.getenv("TASKGATE_EXECUTOR_COMMAND", ""),
                timeout_seconds=_env_float("TASKGATE_EXECUTOR_TIMEOUT_SECONDS", 600.0),
                soft_timeout_seconds=_env_float("TASKGATE_EXECUTOR_SOFT_TIMEOUT_SECONDS", 60.0),
                silence_log_interval_seconds=_env_float(
                    "TASKGATE_EXECUTOR_SILENCE_LOG_INTERVAL_SECONDS",
                    30.0,
                ),
                max_timeout_extension_seconds=_env_float(
                    "TASKGATE_EXECUTOR_MAX_TIMEOUT_EXTENSION_SECONDS",
                    300.0,
                ),
                graceful_shutdown_seconds=_env_float(
                    "TASKGATE_EXECUTOR_GRACEFUL_SHUTDOWN_SECONDS",
                    30.0,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise ConfigError on values the planner, review loop or queue cannot use."""

        planner = self.planner
        if planner.min_subtasks < 1:
            raise ConfigError("TASKGATE_PLANNER_MIN_SUBTASKS must be >= 1.")
        if planner.max_subtasks < planner.min_subtasks:
            raise ConfigError(
                "TASKGATE_PLANNER_MAX_SUBTASKS must be >= TASKGATE_PLANNER_MIN_SUBTASKS.",
            )
        if planner.chunk_token_threshold < 0:
            raise ConfigError("TASKGATE_PLANNER_CHUNK_TOKEN_THRESHOLD must be >= 0.")
        if not 1 <= planner.chunk_complexity_threshold <= 10:  # noqa: PLR2004
            raise ConfigError("TASKGATE_PLANNER_CHUNK_COMPLEXITY_THRESHOLD must be in [1, 10].")
        if self.review.max_iterations < 1:
            raise ConfigError("TASKGATE_REVIEW_MAX_ITERATIONS must be >= 1.")
        if self.review.retry_delay_seconds < 0:
            raise ConfigError("TASKGATE_REVIEW_RETRY_DELAY_SECONDS must be >= 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ConfigError("TASKGATE_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.stale_after_seconds <= 0:
            raise ConfigError("TASKGATE_WORKER_STALE_AFTER_SECONDS must be > 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ConfigError("TASKGATE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.executor.timeout_seconds <= 0:
            raise ConfigError("TASKGATE_EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        if self.executor.max_timeout_extension_seconds < 0:
            raise ConfigError("TASKGATE_EXECUTOR_MAX_TIMEOUT_EXTENSION_SECONDS must be >= 0.")

    def validate_for_worker(self) -> None:
        """Worker runs additionally need an agent command."""

        self.validate()
        if not self.executor.command_template.strip():
            raise ConfigError(
                "An agent command is required. Set TASKGATE_EXECUTOR_COMMAND "
                "or pass --command, e.g. 'my-agent --prompt-file {prompt_file}'.",
            )
        longest_run = (
            self.executor.timeout_seconds + self.executor.max_timeout_extension_seconds
        )
        if longest_run >= self.worker.stale_after_seconds:
            raise ConfigError(
                "TASKGATE_WORKER_STALE_AFTER_SECONDS must exceed the executor timeout "
                "plus its maximum extension.",
            )


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ConfigError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ConfigError(f"Invalid number for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {value!r}")
