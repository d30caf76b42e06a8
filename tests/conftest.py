"""Shared test fixtures."""

from __future__ import annotations

import itertools
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from taskgate.orchestrator.repository import QueueRepository

_SRC_DIR = Path(__file__).resolve().parents[1] / "src"
_ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m taskgate.executor.echo_agent --prompt-file {{prompt_file}}"
)


def _ordered_ids(prefix: str = "task") -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter):03d}"


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "taskgate.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[QueueRepository]:
    """Migrated queue whose task ids (task-001, task-002...) follow creation order."""

    repo = QueueRepository(db_path, id_factory=_ordered_ids())
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def echo_agent_command(monkeypatch: pytest.MonkeyPatch) -> str:
    """Command template running the bundled echo agent, importable from a source checkout."""

    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        os.pathsep.join(filter(None, [str(_SRC_DIR), existing])),
    )
    return _ECHO_AGENT_COMMAND_TEMPLATE
