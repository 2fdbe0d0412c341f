from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.core.config import Settings
from app.core.errors import NotFoundError
from app.db.models.program import Program
from app.db.models.program_instance import ProgramInstance
from app.db.models.task import Task
from app.services.coach_sync import (
    apply_instance_week_edit,
    apply_program_week_edit,
    clear_program_tasks,
    instance_members,
    sync_members,
)
from app.services.task_sync import SyncMode

from conftest import task_item

MONDAY = date(2024, 1, 1)
NOW = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
CONFIG = Settings(coach_sync_horizon_days=7)


def _five_tasks(prefix):
    return [task_item(f"{prefix}{position}", True) for position in range(1, 6)]


@pytest.fixture()
def enrolled(seed):
    user = seed.user()
    program = seed.program(weeks=[{"week_number": 1, "weekly_tasks": _five_tasks("Old")}])
    enrollment = seed.enrollment(user, program, started_at=MONDAY)
    instance = seed.enrollment_instance(enrollment)
    return user, program, instance


def _materialize(db, instance_id, horizon=7):
    instance = db.get(ProgramInstance, instance_id)
    return sync_members(db, instance, mode=SyncMode.CREATE_MISSING, horizon=horizon, now=NOW, config=CONFIG)


def test_override_edit_replaces_untouched_rows_and_keeps_completed(db, seed, enrolled) -> None:
    user, _, instance = enrolled
    _materialize(db, instance.id)
    db.query(Task).filter(Task.user_id == user.id, Task.title == "Old1").update({"status": "completed"})
    db.commit()

    outcome = apply_instance_week_edit(
        db,
        db.get(ProgramInstance, instance.id),
        1,
        weekly_tasks=_five_tasks("New"),
        mode=SyncMode.OVERRIDE_PROGRAM_SOURCED,
        overwrite_existing=True,
        now=NOW,
        config=CONFIG,
    )

    assert outcome.distributed.recomputed_days == [1, 2, 3, 4, 5]
    assert outcome.sync.members_processed == 1
    assert outcome.sync.members_failed == 0
    assert outcome.sync.tasks_replaced == 4
    assert outcome.sync.tasks_created == 5
    titles = sorted(task.title for task in seed.tasks_for(user.id))
    assert titles == ["New1", "New2", "New3", "New4", "New5", "Old1"]
    assert [task.status for task in seed.tasks_for(user.id, title="Old1")] == ["completed"]


def test_fill_empty_edit_leaves_materialized_days_alone(db, seed, enrolled) -> None:
    user, _, instance = enrolled
    _materialize(db, instance.id, horizon=2)

    outcome = apply_instance_week_edit(
        db,
        db.get(ProgramInstance, instance.id),
        1,
        weekly_tasks=_five_tasks("New"),
        mode=SyncMode.FILL_EMPTY,
        overwrite_existing=False,
        now=NOW,
        config=CONFIG,
    )

    assert outcome.distributed.skipped_days == [1, 2]
    assert outcome.distributed.recomputed_days == [3, 4, 5]
    assert outcome.sync.tasks_created == 3
    assert sorted(task.title for task in seed.tasks_for(user.id)) == ["New3", "New4", "New5", "Old1", "Old2"]

    refreshed = db.get(ProgramInstance, instance.id)
    assert refreshed.weeks[0]["has_local_changes"] is True


def test_edit_of_unknown_week_is_not_found(db, enrolled) -> None:
    _, _, instance = enrolled
    with pytest.raises(NotFoundError):
        apply_instance_week_edit(db, db.get(ProgramInstance, instance.id), 9, weekly_tasks=[], now=NOW, config=CONFIG)


def test_create_missing_is_not_an_edit_mode(db, enrolled) -> None:
    _, _, instance = enrolled
    with pytest.raises(ValueError):
        apply_instance_week_edit(
            db,
            db.get(ProgramInstance, instance.id),
            1,
            mode=SyncMode.CREATE_MISSING,
            now=NOW,
            config=CONFIG,
        )


def test_member_failure_is_reported_not_raised(db, seed, monkeypatch) -> None:
    from app.services import coach_sync

    program = seed.program(weeks=[{"week_number": 1, "weekly_tasks": _five_tasks("Old")}])
    cohort = seed.cohort(program, MONDAY)
    instance = seed.cohort_instance(cohort)
    ok_user, bad_user = seed.user(), seed.user()
    seed.enrollment(ok_user, program, started_at=MONDAY, cohort=cohort)
    seed.enrollment(bad_user, program, started_at=MONDAY, cohort=cohort)
    original = coach_sync.sync_instance_days

    def flaky(db, view, *, user_id, **kwargs):
        if user_id == bad_user.id:
            raise RuntimeError("write failed")
        return original(db, view, user_id=user_id, **kwargs)

    monkeypatch.setattr(coach_sync, "sync_instance_days", flaky)

    outcome = apply_instance_week_edit(
        db,
        db.get(ProgramInstance, instance.id),
        1,
        weekly_tasks=_five_tasks("New"),
        mode=SyncMode.OVERRIDE_PROGRAM_SOURCED,
        overwrite_existing=True,
        now=NOW,
        config=CONFIG,
    )

    assert outcome.sync.members_processed == 1
    assert outcome.sync.members_failed == 1
    assert outcome.sync.errors == [{"user_id": str(bad_user.id), "error": "write failed"}]
    assert len(seed.tasks_for(ok_user.id)) == 5


def test_cohort_members_exclude_finished_enrollments(db, seed) -> None:
    program = seed.program()
    cohort = seed.cohort(program, MONDAY)
    instance = seed.cohort_instance(cohort)
    active, upcoming, done = seed.user(), seed.user(), seed.user()
    seed.enrollment(active, program, started_at=MONDAY, cohort=cohort)
    seed.enrollment(upcoming, program, started_at=MONDAY, cohort=cohort, status="upcoming")
    seed.enrollment(done, program, started_at=MONDAY, cohort=cohort, status="completed")

    members = instance_members(db, db.get(ProgramInstance, instance.id))

    assert {member.user_id for member in members} == {active.id, upcoming.id}


def test_program_edit_updates_template_and_instances(db, seed, enrolled) -> None:
    user, program, _ = enrolled

    outcomes = apply_program_week_edit(
        db,
        program.id,
        1,
        weekly_tasks=[task_item("Fresh", True)],
        distribution="fill-first",
        mode=SyncMode.FILL_EMPTY,
        now=NOW,
        config=CONFIG,
    )

    assert len(outcomes) == 1
    stored = db.get(Program, program.id)
    assert stored.weeks[0]["weekly_tasks"][0]["label"] == "Fresh"
    assert stored.weeks[0]["distribution"] == "fill-first"
    assert [task.title for task in seed.tasks_for(user.id)] == ["Fresh"]


def test_program_edit_for_missing_program(db) -> None:
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        apply_program_week_edit(db, uuid4(), 1, weekly_tasks=[], now=NOW, config=CONFIG)


def test_clear_tasks_keeps_today_completed_and_locked(db, seed, enrolled) -> None:
    user, _, instance = enrolled
    seed.task(user_id=user.id, title="Mine", date=date(2024, 1, 3), source="user")
    _materialize(db, instance.id)
    db.query(Task).filter(Task.title == "Old3").update({"status": "completed"})
    db.query(Task).filter(Task.title == "Old4").update({"client_locked": True})
    db.commit()

    outcome = clear_program_tasks(db, db.get(ProgramInstance, instance.id), now=NOW, config=CONFIG)

    assert (outcome.members, outcome.deleted) == (1, 2)
    assert sorted(task.title for task in seed.tasks_for(user.id)) == ["Mine", "Old1", "Old3", "Old4"]
