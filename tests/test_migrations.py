from pathlib import Path

import allure
from sqlalchemy import inspect, text

from agent_dispatch.dispatch.repository import DispatchRepository

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = DispatchRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
    assert version == "20261017_0001"

    tables = set(inspect(repository.engine).get_table_names())
    assert {
        "projects",
        "repositories",
        "agents",
        "tasks",
        "task_dependencies",
        "task_agents",
        "task_additional_repositories",
        "task_events",
    } <= tables
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = DispatchRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.init_schema()

    project = repository.create_project(name="demo")

    assert project.name == "demo"
    repository.close()
