"""Instance materialization, coach week edits and clear-tasks endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.instances import (
    ClearTasksResponse,
    CohortTaskStateSummary,
    DistributionSummary,
    InstanceSummary,
    MaterializeRequest,
    MemberSyncResponse,
    WeekEditRequest,
    WeekEditResponse,
)
from app.core.errors import DataIntegrityError, NotFoundError
from app.db.deps import get_db
from app.db.models.cohort_task_state import CohortTaskState
from app.db.models.program import ProgramCohort, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.coach_sync import WeekEditOutcome, apply_instance_week_edit, clear_program_tasks
from app.services.instance_materializer import ensure_cohort_instance, ensure_enrollment_instance
from app.services.task_sync import SyncMode

router = APIRouter()


def week_edit_response(outcome: WeekEditOutcome, request_id: Optional[str]) -> WeekEditResponse:
    return WeekEditResponse(
        instance_id=outcome.instance_id,
        week_number=outcome.week_number,
        distributed=DistributionSummary(
            week_number=outcome.distributed.week_number,
            recomputed_days=outcome.distributed.recomputed_days,
            skipped_days=outcome.distributed.skipped_days,
        ),
        sync=MemberSyncResponse(
            members_processed=outcome.sync.members_processed,
            members_failed=outcome.sync.members_failed,
            tasks_created=outcome.sync.tasks_created,
            tasks_replaced=outcome.sync.tasks_replaced,
            cohort_states=outcome.sync.cohort_states,
            errors=outcome.sync.errors,
        ),
        request_id=request_id or "",
    )


@router.patch(
    "/instances/{instance_id}/weeks/{week_number}",
    response_model=WeekEditResponse,
    tags=["instances"],
)
def edit_instance_week(
    instance_id: UUID,
    week_number: int,
    payload: WeekEditRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> WeekEditResponse:
    """Edit a week's tasks on one instance and sync the members' upcoming days."""
    instance = db.get(ProgramInstance, instance_id)
    if not instance:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Instance not found")

    request_id = getattr(request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": "/instances/{instance_id}/weeks/{week_number}",
        "instance_id": str(instance_id),
        "week_number": week_number,
        "mode": payload.mode,
        "request_id": request_id,
    }
    with trace("instance.week_edit", metadata=metadata, request_id=request_id):
        try:
            outcome = apply_instance_week_edit(
                db,
                instance,
                week_number,
                weekly_tasks=payload.weekly_tasks,
                distribution=payload.distribution,
                mode=SyncMode(payload.mode),
                horizon=payload.horizon_days,
                overwrite_existing=payload.overwrite_existing,
            )
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except DataIntegrityError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    log_metric("instance.week_edit.success", 1, metadata={"mode": payload.mode})
    log_metric("instance.week_edit.members_failed", outcome.sync.members_failed)
    return week_edit_response(outcome, request_id)


def _instance_summary(instance: ProgramInstance, changed: bool, request_id: Optional[str]) -> InstanceSummary:
    weeks = instance.weeks or []
    return InstanceSummary(
        id=instance.id,
        type=instance.type,
        program_id=instance.program_id,
        enrollment_id=instance.enrollment_id,
        cohort_id=instance.cohort_id,
        start_date=instance.start_date.isoformat(),
        include_weekends=instance.include_weekends,
        weeks=len(weeks),
        days=sum(len(week.get("days") or []) for week in weeks),
        modules=len(instance.modules or []),
        changed=changed,
        request_id=request_id or "",
    )


def _materialize(db: Session, ensure, owner, request_id: Optional[str], rebuild: bool) -> InstanceSummary:
    try:
        instance, changed = ensure(db, owner, rebuild=rebuild)
        db.commit()
    except NotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DataIntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(instance)
    return _instance_summary(instance, changed, request_id)


@router.post("/enrollments/{enrollment_id}/instance", response_model=InstanceSummary, tags=["instances"])
def materialize_enrollment_instance(
    enrollment_id: UUID,
    request: Request,
    payload: Optional[MaterializeRequest] = None,
    db: Session = Depends(get_db),
) -> InstanceSummary:
    enrollment = db.get(ProgramEnrollment, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Enrollment not found")
    request_id = getattr(request.state, "request_id", None)
    rebuild = bool(payload and payload.rebuild)
    with trace(
        "instance.materialize",
        metadata={"enrollment_id": str(enrollment_id), "rebuild": rebuild},
        user_id=str(enrollment.user_id),
        request_id=request_id,
    ):
        summary = _materialize(db, ensure_enrollment_instance, enrollment, request_id, rebuild)
    log_metric("instance.materialize.success", 1, metadata={"type": "individual", "changed": summary.changed})
    return summary


@router.post("/cohorts/{cohort_id}/instance", response_model=InstanceSummary, tags=["instances"])
def materialize_cohort_instance(
    cohort_id: UUID,
    request: Request,
    payload: Optional[MaterializeRequest] = None,
    db: Session = Depends(get_db),
) -> InstanceSummary:
    cohort = db.get(ProgramCohort, cohort_id)
    if not cohort:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cohort not found")
    request_id = getattr(request.state, "request_id", None)
    rebuild = bool(payload and payload.rebuild)
    with trace(
        "instance.materialize",
        metadata={"cohort_id": str(cohort_id), "rebuild": rebuild},
        request_id=request_id,
    ):
        summary = _materialize(db, ensure_cohort_instance, cohort, request_id, rebuild)
    log_metric("instance.materialize.success", 1, metadata={"type": "cohort", "changed": summary.changed})
    return summary


def _clear(db: Session, instance: Optional[ProgramInstance], request_id: Optional[str]) -> ClearTasksResponse:
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Instance not found")
    with trace("instance.clear_tasks", metadata={"instance_id": str(instance.id)}, request_id=request_id):
        outcome = clear_program_tasks(db, instance)
    log_metric("instance.clear_tasks.deleted", outcome.deleted)
    return ClearTasksResponse(
        instance_id=outcome.instance_id,
        members=outcome.members,
        deleted=outcome.deleted,
        request_id=request_id or "",
    )


@router.post("/enrollments/{enrollment_id}/clear-tasks", response_model=ClearTasksResponse, tags=["instances"])
def clear_enrollment_tasks(
    enrollment_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
) -> ClearTasksResponse:
    """Remove the member's future, untouched program tasks; today and completed work stay."""
    instance = db.query(ProgramInstance).filter(ProgramInstance.enrollment_id == enrollment_id).one_or_none()
    return _clear(db, instance, getattr(request.state, "request_id", None))


@router.post("/cohorts/{cohort_id}/clear-tasks", response_model=ClearTasksResponse, tags=["instances"])
def clear_cohort_tasks(
    cohort_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
) -> ClearTasksResponse:
    instance = db.query(ProgramInstance).filter(ProgramInstance.cohort_id == cohort_id).one_or_none()
    return _clear(db, instance, getattr(request.state, "request_id", None))


@router.get("/cohorts/{cohort_id}/task-states", response_model=List[CohortTaskStateSummary], tags=["instances"])
def list_cohort_task_states(
    cohort_id: UUID,
    request: Request,
    start_day_index: Optional[int] = Query(default=None, ge=1),
    end_day_index: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> List[CohortTaskStateSummary]:
    """Cohort completion per task and program day, for the coach's week view."""
    if not db.get(ProgramCohort, cohort_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cohort not found")
    request_id = getattr(request.state, "request_id", None)
    with trace("cohort.task_states", metadata={"cohort_id": str(cohort_id)}, request_id=request_id):
        query = db.query(CohortTaskState).filter(CohortTaskState.cohort_id == cohort_id)
        if start_day_index is not None:
            query = query.filter(CohortTaskState.day_index >= start_day_index)
        if end_day_index is not None:
            query = query.filter(CohortTaskState.day_index <= end_day_index)
        states = query.order_by(CohortTaskState.day_index.asc(), CohortTaskState.created_at.asc()).all()
    return [CohortTaskStateSummary.model_validate(state) for state in states]
