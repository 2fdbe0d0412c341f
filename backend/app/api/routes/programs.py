"""Program template week edits propagated to every active instance."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.routes.instances import week_edit_response
from app.api.schemas.instances import ProgramWeekEditResponse, WeekEditRequest
from app.core.errors import DataIntegrityError, NotFoundError
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.coach_sync import apply_program_week_edit
from app.services.task_sync import SyncMode

router = APIRouter()


@router.patch(
    "/programs/{program_id}/weeks/{week_number}",
    response_model=ProgramWeekEditResponse,
    tags=["programs"],
)
def edit_program_week(
    program_id: UUID,
    week_number: int,
    payload: WeekEditRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ProgramWeekEditResponse:
    request_id = getattr(request.state, "request_id", None)
    metadata = {
        "program_id": str(program_id),
        "week_number": week_number,
        "mode": payload.mode,
        "request_id": request_id,
    }
    with trace("program.week_edit", metadata=metadata, request_id=request_id):
        try:
            outcomes = apply_program_week_edit(
                db,
                program_id,
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

    log_metric("program.week_edit.instances", len(outcomes), metadata={"mode": payload.mode})
    return ProgramWeekEditResponse(
        program_id=program_id,
        week_number=week_number,
        instances=[week_edit_response(outcome, request_id) for outcome in outcomes],
        request_id=request_id or "",
    )
