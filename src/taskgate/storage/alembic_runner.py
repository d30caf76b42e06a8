"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    config = Config()
    config.set_main_option("script_location", _escape(str(MIGRATIONS_DIR)))
    config.set_main_option("sqlalchemy.url", _escape(f"sqlite:///{db_path}"))
    command.upgrade(config, "head")


def _escape(value: str) -> str:
    # Config values go through ConfigParser interpolation.
    return value.replace("%", "%%")
