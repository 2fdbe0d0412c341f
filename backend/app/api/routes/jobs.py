"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

import secrets
from time import perf_counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import sessionmaker

from app.api.schemas.jobs import HabitCountsResponse, ProgramSyncResponse
from app.core.config import settings
from app.core.errors import FatalSyncError
from app.db.deps import get_session_factory
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.job_runner import run_program_sync

router = APIRouter()
bearer_scheme = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    if not settings.cron_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron secret not configured")
    if credentials is None or not secrets.compare_digest(credentials.credentials, settings.cron_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "program_sync_interval_hours": settings.program_sync_interval_hours,
                "run_on_startup": settings.jobs_run_on_startup,
            },
        }
    return {**data, "request_id": request_id or ""}


@router.api_route(
    "/jobs/program-sync",
    methods=["GET", "POST"],
    response_model=ProgramSyncResponse,
    response_model_by_alias=True,
    tags=["jobs"],
    dependencies=[Depends(require_cron_secret)],
)
def program_sync(
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ProgramSyncResponse:
    """Run one reconciliation pass; called by an external cron or manually."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("jobs.program_sync", metadata={"request_id": request_id}, request_id=request_id):
        try:
            summary = run_program_sync(session_factory, trigger="http")
        except FatalSyncError as exc:
            log_metric("jobs.program_sync.failure", 1)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    log_metric("jobs.program_sync.latency_ms", (perf_counter() - start) * 1000)
    return ProgramSyncResponse(
        synced_today=summary.synced_today,
        synced_tomorrow=summary.synced_tomorrow,
        skipped=summary.skipped,
        no_instance=summary.no_instance,
        data_integrity=summary.data_integrity,
        errors=summary.errors,
        orphans_removed=summary.orphans_removed,
        cohort_states=summary.cohort_states,
        habits=HabitCountsResponse(
            created=summary.habits.created,
            updated=summary.habits.updated,
            archived=summary.habits.archived,
        ),
        duration=summary.duration_ms,
        run_id=summary.run_id,
    )
