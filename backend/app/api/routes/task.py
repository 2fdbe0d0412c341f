"""Member task API routes."""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import asc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.schemas.task import TaskSummary, TaskUpdateRequest, TaskUpdateResponse
from app.db.deps import get_db
from app.db.models.task import Task
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.cohort_task_state import record_member_task_status

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tasks", response_model=List[TaskSummary], tags=["tasks"])
def list_tasks(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the tasks"),
    date_: Optional[date] = Query(default=None, alias="date"),
    list_type: Optional[str] = Query(default=None, pattern="^(focus|backlog)$"),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> List[TaskSummary]:
    """List a user's tasks, optionally for one calendar date and list."""
    request_id = getattr(http_request.state, "request_id", None)

    metadata: Dict[str, Any] = {
        "route": "/tasks",
        "user_id": str(user_id),
        "date": date_.isoformat() if date_ else None,
        "list_type": list_type,
        "request_id": request_id,
    }

    with trace(
        "task.list",
        metadata=metadata,
        user_id=str(user_id),
        request_id=request_id,
    ):
        query = db.query(Task).filter(Task.user_id == user_id)
        if date_:
            query = query.filter(Task.date == date_)
        if list_type:
            query = query.filter(Task.list_type == list_type)
        if not include_deleted:
            query = query.filter(Task.status != "deleted")
        tasks = query.order_by(asc(Task.date), asc(Task.list_type), asc(Task.order), asc(Task.created_at)).all()

    log_metric(
        "task.list.count",
        len(tasks),
        metadata={"user_id": str(user_id)},
    )
    return [TaskSummary.model_validate(task) for task in tasks]


@router.patch("/tasks/{task_id}", response_model=TaskUpdateResponse, tags=["tasks"])
def update_task(
    task_id: UUID,
    payload: TaskUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskUpdateResponse:
    """Complete, reopen, delete or pin a task.

    Completed and locked tasks are left alone by program sync.
    """
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    if task.user_id != payload.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task does not belong to user")

    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": f"/tasks/{task_id}",
        "task_id": str(task_id),
        "user_id": str(payload.user_id),
        "status": payload.status,
        "client_locked": payload.client_locked,
        "request_id": request_id,
    }

    changed = False
    status_changed = False
    try:
        with trace(
            "task.update",
            metadata=metadata,
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            if payload.status is not None and task.status != payload.status:
                changed = True
                status_changed = True
                task.status = payload.status
                task.completed_at = datetime.now(timezone.utc) if payload.status == "completed" else None
            if payload.client_locked is not None and bool(task.client_locked) != payload.client_locked:
                changed = True
                task.client_locked = payload.client_locked
            db.add(task)
            db.commit()
    except Exception:
        db.rollback()
        raise

    if status_changed:
        _update_cohort_rollup(db, task)

    log_metric(
        "task.update.changed",
        1 if changed else 0,
        metadata={"user_id": str(payload.user_id), "task_id": str(task_id)},
    )
    return TaskUpdateResponse(
        id=task.id,
        status=task.status,
        client_locked=bool(task.client_locked),
        completed_at=task.completed_at,
        request_id=request_id or "",
    )


def _update_cohort_rollup(db: Session, task: Task) -> None:
    """The task change is already committed; a failed rollup update is logged, not raised."""
    try:
        state = record_member_task_status(db, task)
        if state is not None:
            db.commit()
            log_metric(
                "cohort_task_state.completion_rate",
                state.completion_rate,
                metadata={"cohort_id": str(state.cohort_id), "day_index": state.day_index},
            )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unable to update cohort rollup for task %s", task.id)
