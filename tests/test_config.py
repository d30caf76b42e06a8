from __future__ import annotations

from pathlib import Path

import allure
import pytest

from taskgate.config import ExecutorSettings, ReviewSettings, Settings, WorkerSettings
from taskgate.errors import ConfigError
from taskgate.planning import PlannerConfig

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def _worker_ready(**overrides: object) -> Settings:
    settings = Settings(executor=ExecutorSettings(command_template="agent {prompt_file}"))
    for name, value in overrides.items():
        setattr(settings, name, value)
    return settings


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKGATE_DB_PATH", "/tmp/queue.db")
    monkeypatch.setenv("TASKGATE_PLANNER_AUTO_CHUNK", "off")
    monkeypatch.setenv("TASKGATE_PLANNER_MAX_SUBTASKS", "4")
    monkeypatch.setenv("TASKGATE_REVIEW_MAX_ITERATIONS", "5")
    monkeypatch.setenv("TASKGATE_REVIEW_RETRY_DELAY_SECONDS", "0.25")
    monkeypatch.setenv("TASKGATE_REVIEW_TEMPLATE_ID", "goal_drift_guard")
    monkeypatch.setenv("TASKGATE_WORKER_ID", "worker-7")
    monkeypatch.setenv("TASKGATE_EXECUTOR_COMMAND", "agent --prompt-file {prompt_file}")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/queue.db")
    assert settings.planner.auto_chunk is False
    assert settings.planner.max_subtasks == 4
    assert settings.review.max_iterations == 5
    assert settings.review.retry_delay_seconds == 0.25
    assert settings.worker.worker_id == "worker-7"
    assert settings.executor.command_template == "agent --prompt-file {prompt_file}"
    review_config = settings.review.to_config()
    assert review_config.max_iterations == 5
    assert review_config.active_template_id == "goal_drift_guard"


def test_explicit_db_path_wins_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKGATE_DB_PATH", "/tmp/env.db")

    assert Settings.from_env(db_path=Path("cli.db")).db_path == Path("cli.db")


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("TASKGATE_PLANNER_AUTO_CHUNK", "maybe", "Invalid boolean value"),
        ("TASKGATE_REVIEW_MAX_ITERATIONS", "three", "Invalid integer value"),
        ("TASKGATE_EXECUTOR_TIMEOUT_SECONDS", "soon", "Invalid number"),
    ],
)
def test_from_env_rejects_malformed_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError, match=message):
        Settings.from_env()


def test_defaults_are_valid() -> None:
    Settings().validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(planner=PlannerConfig(min_subtasks=0)), "MIN_SUBTASKS"),
        (Settings(planner=PlannerConfig(max_subtasks=1, min_subtasks=2)), "MAX_SUBTASKS"),
        (Settings(planner=PlannerConfig(chunk_complexity_threshold=11)), "COMPLEXITY_THRESHOLD"),
        (Settings(review=ReviewSettings(max_iterations=0)), "MAX_ITERATIONS"),
        (Settings(review=ReviewSettings(retry_delay_seconds=-1)), "RETRY_DELAY"),
        (Settings(worker=WorkerSettings(stale_after_seconds=0)), "STALE_AFTER"),
        (Settings(sqlite_busy_timeout_ms=0), "BUSY_TIMEOUT"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        settings.validate()


def test_worker_validation_requires_agent_command() -> None:
    with pytest.raises(ConfigError, match="An agent command is required"):
        Settings().validate_for_worker()

    _worker_ready().validate_for_worker()


def test_worker_validation_requires_stale_window_beyond_timeout() -> None:
    settings = _worker_ready(worker=WorkerSettings(stale_after_seconds=600))

    with pytest.raises(ConfigError, match="STALE_AFTER_SECONDS must exceed"):
        settings.validate_for_worker()


def test_config_error_is_a_value_error() -> None:
    assert issubclass(ConfigError, ValueError)
