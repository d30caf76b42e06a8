from pathlib import Path

import allure
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from taskgate.orchestrator.models import QueueItemCreate
from taskgate.orchestrator.repository import QueueRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = QueueRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table' AND name LIKE 'queue_%'
                ORDER BY name
                """,
            ),
        ).scalars().all()
        indexes = connection.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'index'"),
        ).scalars().all()
        columns = connection.execute(
            text("SELECT name FROM pragma_table_info('queue_tasks')"),
        ).scalars().all()

    assert version == "20261018_0002"
    assert tables == ["queue_conversation_entries", "queue_task_events", "queue_tasks"]
    assert "uq_queue_tasks_single_awaiting" in indexes
    assert "idx_queue_tasks_plan_step" in indexes
    assert "plan_step" in columns
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = QueueRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.enqueue(QueueItemCreate(prompt="keep me"))

    repository.init_schema()

    assert [task.prompt for task in repository.list_tasks()] == ["keep me"]
    repository.close()


def test_database_rejects_second_awaiting_task(tmp_path: Path) -> None:
    repository = QueueRepository(tmp_path / "migrations.db")
    repository.init_schema()
    first = repository.enqueue(QueueItemCreate(prompt="one"))
    second = repository.enqueue(QueueItemCreate(prompt="two"))

    with repository.engine.begin() as connection:
        connection.execute(
            text("UPDATE queue_tasks SET status = 'awaiting_response' WHERE task_id = :task_id"),
            {"task_id": first.task_id},
        )
    with pytest.raises(IntegrityError), repository.engine.begin() as connection:
        connection.execute(
            text("UPDATE queue_tasks SET status = 'awaiting_response' WHERE task_id = :task_id"),
            {"task_id": second.task_id},
        )
    repository.close()
