from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.db.deps import get_db
from app.main import app

from conftest import ProgramSeeder, make_session_factory, task_item


@pytest.fixture()
def client():
    session_factory = make_session_factory()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client, ProgramSeeder(session_factory)
    app.dependency_overrides.clear()


def _program(seed, labels=("Old1", "Old2", "Old3")):
    return seed.program(
        length_days=14,
        include_weekends=True,
        weeks=[{"week_number": 1, "weekly_tasks": [task_item(label, True) for label in labels]}],
    )


def _today():
    return datetime.now(timezone.utc).date()


def test_materialize_enrollment_instance_is_idempotent(client) -> None:
    test_client, seed = client
    program = _program(seed)
    enrollment = seed.enrollment(seed.user(), program, started_at=_today())

    first = test_client.post(f"/enrollments/{enrollment.id}/instance")
    second = test_client.post(f"/enrollments/{enrollment.id}/instance")
    rebuilt = test_client.post(f"/enrollments/{enrollment.id}/instance", json={"rebuild": True})

    assert first.status_code == 200
    body = first.json()
    assert (body["type"], body["weeks"], body["days"], body["changed"]) == ("individual", 2, 14, True)
    assert second.json()["changed"] is False
    assert rebuilt.json()["changed"] is True
    assert first.json()["id"] == second.json()["id"] == rebuilt.json()["id"]


def test_materialize_unknown_enrollment_or_cohort(client) -> None:
    test_client, _ = client
    assert test_client.post(f"/enrollments/{uuid4()}/instance").status_code == 404
    assert test_client.post(f"/cohorts/{uuid4()}/instance").status_code == 404


def test_materialize_cohort_instance(client) -> None:
    test_client, seed = client
    cohort = seed.cohort(_program(seed), _today())

    response = test_client.post(f"/cohorts/{cohort.id}/instance")

    assert response.status_code == 200
    assert response.json()["type"] == "cohort"
    assert response.json()["cohort_id"] == str(cohort.id)


def test_week_edit_override_reaches_materialized_tasks(client) -> None:
    test_client, seed = client
    user = seed.user()
    instance = seed.enrollment_instance(seed.enrollment(user, _program(seed), started_at=_today()))
    first = test_client.patch(
        f"/instances/{instance.id}/weeks/1",
        json={"mode": "fill-empty", "overwrite_existing": False},
    )
    assert first.json()["sync"]["tasks_created"] == 3

    response = test_client.patch(
        f"/instances/{instance.id}/weeks/1",
        json={
            "weekly_tasks": [task_item("New1", True), task_item("New2", True)],
            "mode": "override-program-sourced",
            "overwrite_existing": True,
            "horizon_days": 7,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["distributed"]["recomputed_days"] == [1, 2, 3, 4, 5, 6, 7]
    assert body["sync"]["members_processed"] == 1
    assert body["sync"]["tasks_replaced"] == 3
    assert body["sync"]["tasks_created"] == 2
    assert sorted(task.title for task in seed.tasks_for(user.id)) == ["New1", "New2"]


def test_week_edit_errors(client) -> None:
    test_client, seed = client
    instance = seed.enrollment_instance(seed.enrollment(seed.user(), _program(seed), started_at=_today()))

    assert test_client.patch(f"/instances/{uuid4()}/weeks/1", json={}).status_code == 404
    assert test_client.patch(f"/instances/{instance.id}/weeks/7", json={}).status_code == 404
    invalid = test_client.patch(f"/instances/{instance.id}/weeks/1", json={"weekly_tasks": [{"label": ""}]})
    assert invalid.status_code == 422
    bad_mode = test_client.patch(f"/instances/{instance.id}/weeks/1", json={"mode": "create-missing"})
    assert bad_mode.status_code == 422


def test_program_week_edit_propagates_to_instances(client) -> None:
    test_client, seed = client
    program = _program(seed)
    user = seed.user()
    seed.enrollment_instance(seed.enrollment(user, program, started_at=_today()))

    response = test_client.patch(
        f"/programs/{program.id}/weeks/1",
        json={"weekly_tasks": [task_item("Fresh", True)], "distribution": "fill-first"},
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["instances"]) == 1
    assert body["instances"][0]["sync"]["tasks_created"] == 1
    assert [task.title for task in seed.tasks_for(user.id)] == ["Fresh"]
    assert test_client.patch(f"/programs/{uuid4()}/weeks/1", json={}).status_code == 404


def test_clear_tasks_removes_future_pending_rows(client) -> None:
    test_client, seed = client
    user = seed.user()
    enrollment = seed.enrollment(user, _program(seed), started_at=_today())
    instance = seed.enrollment_instance(enrollment)
    test_client.patch(f"/instances/{instance.id}/weeks/1", json={"mode": "fill-empty"})
    tomorrow = seed.tasks_for(user.id, date=_today() + timedelta(days=1))[0]
    test_client.patch(f"/tasks/{tomorrow.id}", json={"user_id": str(user.id), "client_locked": True})

    response = test_client.post(f"/enrollments/{enrollment.id}/clear-tasks")

    assert response.status_code == 200
    assert response.json()["deleted"] == 1
    remaining = {task.title for task in seed.tasks_for(user.id)}
    assert remaining == {"Old1", "Old2"}
    assert test_client.post(f"/cohorts/{uuid4()}/clear-tasks").status_code == 404
