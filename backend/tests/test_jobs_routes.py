from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app.api.routes import jobs as jobs_routes
from app.db.deps import get_session_factory
from app.main import app

from conftest import ProgramSeeder, make_session_factory, task_item

SECRET = "cron-s3cret"


@pytest.fixture()
def client(monkeypatch):
    session_factory = make_session_factory()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    monkeypatch.setattr(jobs_routes.settings, "cron_secret", SECRET)
    monkeypatch.setattr(jobs_routes.settings, "sync_batch_pause_seconds", 0)
    monkeypatch.setattr(jobs_routes.settings, "sync_max_workers", 1)
    with TestClient(app) as test_client:
        yield test_client, ProgramSeeder(session_factory)
    app.dependency_overrides.clear()


def _auth(secret=SECRET):
    return {"Authorization": f"Bearer {secret}"}


def test_jobs_config_lists_program_sync_schedule(client) -> None:
    test_client, _ = client
    response = test_client.get("/jobs")

    assert response.status_code == 200
    body = response.json()
    assert body["schedule"]["program_sync_interval_hours"] == 6
    assert "scheduler_enabled" in body


def test_program_sync_requires_bearer_secret(client) -> None:
    test_client, _ = client

    assert test_client.post("/jobs/program-sync").status_code == 401
    assert test_client.post("/jobs/program-sync", headers=_auth("wrong")).status_code == 401


def test_program_sync_unavailable_without_configured_secret(client, monkeypatch) -> None:
    test_client, _ = client
    monkeypatch.setattr(jobs_routes.settings, "cron_secret", None)

    response = test_client.get("/jobs/program-sync", headers=_auth())

    assert response.status_code == 503


def test_program_sync_reports_camel_case_summary(client) -> None:
    test_client, seed = client
    today = datetime.now(timezone.utc).date()
    program = seed.program(
        length_days=14,
        include_weekends=True,
        # Started today, so week 1 may be a single day; week 2 covers tomorrow.
        weeks=[
            {"week_number": number, "distribution": "all-days", "weekly_tasks": [task_item("Check in", True)]}
            for number in (1, 2)
        ],
        modules=[{"id": "m1", "habits": [{"title": "Hydrate"}]}],
    )
    user = seed.user()
    seed.enrollment_instance(seed.enrollment(user, program, started_at=today))
    seed.enrollment(seed.user(), program, started_at=today)

    response = test_client.post("/jobs/program-sync", headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["syncedToday"] == 1
    assert body["syncedTomorrow"] == 1
    assert body["noInstance"] == 1
    assert body["dataIntegrity"] == 0
    assert body["cohortStates"] == 0
    assert body["errors"] == 0
    assert body["orphansRemoved"] == 0
    assert body["habits"] == {"created": 1, "updated": 0, "archived": 0}
    assert body["runId"]
    assert body["duration"] >= 0
    assert len(seed.tasks_for(user.id)) == 2

    rerun = test_client.get("/jobs/program-sync", headers=_auth()).json()
    assert (rerun["syncedToday"], rerun["skipped"]) == (0, 2)
