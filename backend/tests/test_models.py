from app.db.base import Base
from app.db import models  # noqa: F401  ensure models are loaded
from app.db.models.user import User

from conftest import ORG_ID


def test_metadata_contains_core_tables() -> None:
    table_names = set(Base.metadata.tables.keys())
    expected = {
        "users",
        "organization_settings",
        "programs",
        "program_cohorts",
        "program_enrollments",
        "program_instances",
        "tasks",
        "habits",
        "sync_runs",
        "cohort_task_states",
    }

    assert expected.issubset(table_names)


def test_task_idempotency_key_is_unique() -> None:
    constraints = {constraint.name for constraint in Base.metadata.tables["tasks"].constraints}
    assert "uq_tasks_instance_day_task" in constraints


def test_cohort_task_state_is_unique_per_cohort_task_and_day() -> None:
    constraints = {constraint.name for constraint in Base.metadata.tables["cohort_task_states"].constraints}
    assert "uq_cohort_task_states_cohort_task_day" in constraints


def test_uuid_columns_read_back_on_sqlite(seed, session_factory) -> None:
    user = seed.user()
    session = session_factory()
    try:
        stored = session.get(User, user.id)
        assert stored.organization_id == ORG_ID
        assert any(char.isalpha() for char in ORG_ID.hex)
    finally:
        session.close()
