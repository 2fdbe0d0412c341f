from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.deps import get_db
from app.db.models.task import Task
from app.db.models.user import User
from app.main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    Task.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _seed(session_factory):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id))
        # No relationship orders these inserts, so the user row must land first.
        session.commit()
        session.add_all(
            [
                Task(user_id=user_id, title="Focus 1", date=date(2024, 1, 1), list_type="focus", order=0, source="program"),
                Task(user_id=user_id, title="Backlog", date=date(2024, 1, 1), list_type="backlog", order=0),
                Task(user_id=user_id, title="Gone", date=date(2024, 1, 1), status="deleted"),
                Task(user_id=user_id, title="Tomorrow", date=date(2024, 1, 2), list_type="focus"),
            ]
        )
        session.commit()
        ids = {task.title: task.id for task in session.query(Task).all()}
        return user_id, ids
    finally:
        session.close()


def test_list_tasks_for_a_day(client) -> None:
    test_client, session_factory = client
    user_id, _ = _seed(session_factory)

    response = test_client.get("/tasks", params={"user_id": str(user_id), "date": "2024-01-01"})

    assert response.status_code == 200
    assert [(task["title"], task["list_type"]) for task in response.json()] == [
        ("Backlog", "backlog"),
        ("Focus 1", "focus"),
    ]


def test_list_tasks_filters(client) -> None:
    test_client, session_factory = client
    user_id, _ = _seed(session_factory)

    focus = test_client.get("/tasks", params={"user_id": str(user_id), "list_type": "focus"}).json()
    everything = test_client.get("/tasks", params={"user_id": str(user_id), "include_deleted": "true"}).json()

    assert [task["title"] for task in focus] == ["Focus 1", "Tomorrow"]
    assert len(everything) == 4
    assert test_client.get("/tasks", params={"user_id": str(user_id), "list_type": "later"}).status_code == 422


def test_complete_and_lock_task(client) -> None:
    test_client, session_factory = client
    user_id, ids = _seed(session_factory)

    done = test_client.patch(f"/tasks/{ids['Focus 1']}", json={"user_id": str(user_id), "status": "completed"})
    locked = test_client.patch(f"/tasks/{ids['Backlog']}", json={"user_id": str(user_id), "client_locked": True})
    reopened = test_client.patch(f"/tasks/{ids['Focus 1']}", json={"user_id": str(user_id), "status": "pending"})

    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert done.json()["completed_at"] is not None
    assert locked.json()["client_locked"] is True
    assert reopened.json()["completed_at"] is None


def test_update_task_rejects_other_users_and_missing_tasks(client) -> None:
    test_client, session_factory = client
    _, ids = _seed(session_factory)

    other = test_client.patch(f"/tasks/{ids['Backlog']}", json={"user_id": str(uuid4()), "status": "completed"})
    missing = test_client.patch(f"/tasks/{uuid4()}", json={"user_id": str(uuid4()), "status": "completed"})

    assert other.status_code == 403
    assert missing.status_code == 404
