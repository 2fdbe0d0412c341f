"""Shared fixtures: an in-memory SQLite store and program seeding helpers."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models.cohort_task_state import CohortTaskState
from app.db.models.habit import Habit
from app.db.models.organization import OrganizationSettings
from app.db.models.program import Program, ProgramCohort, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.db.models.sync_run import SyncRun
from app.db.models.task import Task
from app.db.models.user import User
from app.services.instance_materializer import ensure_cohort_instance, ensure_enrollment_instance

ORG_ID = UUID("5f1c0a2e-8b7d-4c3a-9e6f-0a1b2c3d4e5f")

SYNC_MODELS = (
    User,
    OrganizationSettings,
    Program,
    ProgramCohort,
    ProgramEnrollment,
    ProgramInstance,
    Task,
    Habit,
    SyncRun,
    CohortTaskState,
)


def make_session_factory(models: Iterable[Any] = SYNC_MODELS) -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover - sqlite setup
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    for model in models:
        model.__table__.create(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def task_item(label: str, primary: bool = False, **extra: Any) -> Dict[str, Any]:
    return {"label": label, "is_primary": primary, **extra}


class ProgramSeeder:
    """Writes fixture rows through short-lived sessions and returns detached copies."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _save(self, obj):
        session = self.session_factory()
        try:
            session.add(obj)
            session.commit()
            session.refresh(obj)
            session.expunge(obj)
            return obj
        finally:
            session.close()

    def user(self, timezone: Optional[str] = "UTC") -> User:
        return self._save(User(id=uuid4(), organization_id=ORG_ID, timezone=timezone))

    def org_settings(self, daily_focus_slots: Optional[int] = 3, default_distribution: Optional[str] = None):
        return self._save(
            OrganizationSettings(
                organization_id=ORG_ID,
                daily_focus_slots=daily_focus_slots,
                default_distribution=default_distribution,
            )
        )

    def program(
        self,
        *,
        length_days: int = 10,
        include_weekends: bool = False,
        weeks: Optional[List[Dict[str, Any]]] = None,
        modules: Optional[List[Dict[str, Any]]] = None,
        default_distribution: Optional[str] = None,
        cohort_completion_threshold: Optional[int] = None,
    ) -> Program:
        program = Program(
            organization_id=ORG_ID,
            name="Momentum",
            length_days=length_days,
            include_weekends=include_weekends,
            default_distribution=default_distribution,
            weeks=weeks or [],
            modules=modules or [],
        )
        if cohort_completion_threshold is not None:
            program.cohort_completion_threshold = cohort_completion_threshold
        return self._save(program)

    def cohort(self, program: Program, start_date: date) -> ProgramCohort:
        return self._save(
            ProgramCohort(
                program_id=program.id,
                organization_id=ORG_ID,
                name="Spring",
                start_date=start_date,
            )
        )

    def enrollment(
        self,
        user: User,
        program: Program,
        *,
        started_at: date,
        cohort: Optional[ProgramCohort] = None,
        status: str = "active",
    ) -> ProgramEnrollment:
        return self._save(
            ProgramEnrollment(
                user_id=user.id,
                program_id=program.id,
                organization_id=ORG_ID,
                cohort_id=cohort.id if cohort else None,
                started_at=started_at,
                status=status,
            )
        )

    def enrollment_instance(self, enrollment: ProgramEnrollment) -> ProgramInstance:
        session = self.session_factory()
        try:
            row = session.get(ProgramEnrollment, enrollment.id)
            instance, _ = ensure_enrollment_instance(session, row)
            session.commit()
            session.refresh(instance)
            session.expunge(instance)
            return instance
        finally:
            session.close()

    def cohort_instance(self, cohort: ProgramCohort) -> ProgramInstance:
        session = self.session_factory()
        try:
            row = session.get(ProgramCohort, cohort.id)
            instance, _ = ensure_cohort_instance(session, row)
            session.commit()
            session.refresh(instance)
            session.expunge(instance)
            return instance
        finally:
            session.close()

    def task(self, **kwargs) -> Task:
        kwargs.setdefault("title", "Task")
        return self._save(Task(**kwargs))

    def tasks_for(self, user_id: UUID, **filters) -> List[Task]:
        session = self.session_factory()
        try:
            query = session.query(Task).filter(Task.user_id == user_id)
            for key, value in filters.items():
                query = query.filter(getattr(Task, key) == value)
            rows = query.order_by(Task.date, Task.list_type, Task.order).all()
            for row in rows:
                session.expunge(row)
            return rows
        finally:
            session.close()


@pytest.fixture()
def session_factory() -> sessionmaker:
    return make_session_factory()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def seed(session_factory) -> ProgramSeeder:
    return ProgramSeeder(session_factory)
